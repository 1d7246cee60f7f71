from fastapi import FastAPI, Request
from starlette.responses import Response

from dalcoffee.config import settings


ALLOWED_HEADERS = 'authorization, x-client-info, apikey, content-type, x-cron-secret'
ALLOWED_METHODS = 'GET, POST, PUT, PATCH, DELETE, OPTIONS'


def _apply_cors(response: Response) -> Response:
    response.headers['Access-Control-Allow-Origin'] = settings.cors_allow_origin
    response.headers['Access-Control-Allow-Headers'] = ALLOWED_HEADERS
    response.headers['Access-Control-Allow-Methods'] = ALLOWED_METHODS
    return response


def install_cors_headers(app: FastAPI) -> None:
    @app.middleware("http")
    async def add_cors_headers(request: Request, call_next):
        if request.method == "OPTIONS":
            return _apply_cors(Response(status_code=200))
        response: Response = await call_next(request)
        return _apply_cors(response)
