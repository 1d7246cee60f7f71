import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from dalcoffee.config import settings
from dalcoffee.routers import contracts, functions, orders, realtime, reports
from dalcoffee.security.headers import install_cors_headers

logging.basicConfig(
    level=settings.log_level.upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()],
)

app = FastAPI(title='Dal Coffee Marketplace')

install_cors_headers(app)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={'error': exc.detail}, headers=exc.headers)


app.include_router(orders.router)
app.include_router(contracts.router)
app.include_router(functions.router)
app.include_router(reports.router)
app.include_router(realtime.router)


@app.get('/health')
def health() -> dict:
    return {'status': 'ok'}
