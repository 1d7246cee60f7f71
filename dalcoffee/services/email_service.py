from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from dalcoffee.config import settings


logger = logging.getLogger(__name__)


class EmailDeliveryError(RuntimeError):
    pass


@dataclass(frozen=True)
class EmailMessage:
    to: list[str]
    subject: str
    html: str
    sender: str | None = None

    def as_payload(self) -> dict:
        return {
            'from': self.sender or settings.email_from,
            'to': self.to,
            'subject': self.subject,
            'html': self.html,
        }


def send_email(message: EmailMessage) -> dict:
    """POST one message to the email provider. Raises EmailDeliveryError on any failure."""
    if not message.to:
        raise EmailDeliveryError('No recipients')

    # A missing key is not checked here: the provider rejects the call and that surfaces as a failed send.
    req = Request(
        url=f"{settings.resend_api_base_url.rstrip('/')}/emails",
        data=json.dumps(message.as_payload()).encode('utf-8'),
        headers={
            'Authorization': f'Bearer {settings.resend_api_key or ""}',
            'Content-Type': 'application/json',
        },
        method='POST',
    )
    try:
        with urlopen(req, timeout=settings.email_timeout_seconds) as response:
            body = response.read().decode('utf-8')
    except HTTPError as exc:
        body = exc.read().decode('utf-8', errors='ignore') if exc.fp else ''
        raise EmailDeliveryError(f'Email API error {exc.code}: {body}') from exc
    except URLError as exc:
        raise EmailDeliveryError(f'Email API network error: {exc.reason}') from exc
    except OSError as exc:
        # Read timeouts and resets after the connection opened are not wrapped by urlopen.
        raise EmailDeliveryError(f'Email API network error: {exc}') from exc

    logger.info('Email "%s" sent to %s', message.subject, ', '.join(message.to))
    try:
        return json.loads(body) if body else {}
    except ValueError:
        return {}
