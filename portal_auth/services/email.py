from __future__ import annotations

import html
from http.client import HTTPException
import json
import logging
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

LOGGER = logging.getLogger(__name__)

SENDGRID_SEND_ENDPOINT = "https://api.sendgrid.com/v3/mail/send"


class EmailSendError(RuntimeError):
    pass


class EmailSender:
    def __init__(
        self,
        api_key: str,
        from_email: str,
        app_name: str,
        ttl_seconds: int,
        timeout: float = 10.0,
    ) -> None:
        self._api_key = api_key
        self._from_email = from_email
        self._app_name = app_name
        self._ttl_seconds = ttl_seconds
        self._timeout = timeout

    def send_code(self, to_email: str, code: str) -> None:
        if not self._api_key or not self._from_email:
            raise EmailSendError("SendGrid is not configured")

        payload = json.dumps(
            _build_payload(
                self._from_email,
                to_email,
                f"Verify Your Email - {self._app_name}",
                _build_text_body(code, self._ttl_seconds),
                _build_html_body(code, self._ttl_seconds, self._app_name),
            )
        ).encode("utf-8")
        request = Request(
            SENDGRID_SEND_ENDPOINT,
            data=payload,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            method="POST",
        )

        try:
            with urlopen(request, timeout=self._timeout) as response:
                response.read()
        except HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="replace")
            LOGGER.error("SendGrid API error to=%s response=%s", to_email, error_body)
            raise EmailSendError("Failed to send verification email") from exc
        except URLError as exc:
            raise EmailSendError("Failed to reach SendGrid API") from exc
        except (OSError, HTTPException) as exc:
            LOGGER.error("SendGrid request failed to=%s: %s", to_email, exc)
            raise EmailSendError("Failed to reach SendGrid API") from exc


def _build_payload(
    sender: str, recipient: str, subject: str, text_body: str, html_body: str
) -> dict:
    return {
        "personalizations": [{"to": [{"email": recipient}]}],
        "from": {"email": sender},
        "subject": subject,
        "content": [
            {"type": "text/plain", "value": text_body},
            {"type": "text/html", "value": html_body},
        ],
    }


def _build_text_body(code: str, ttl_seconds: int) -> str:
    minutes = max(1, ttl_seconds // 60)
    return f"Your verification code is: {code}. It will expire in {minutes} minutes."


def _build_html_body(code: str, ttl_seconds: int, app_name: str) -> str:
    minutes = max(1, ttl_seconds // 60)
    name = html.escape(app_name)
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        "<h1>Email Verification</h1>"
        f"<p>Thank you for choosing {name}. Please verify your email address by "
        "entering the following code:</p>"
        '<div style="font-size: 24px; letter-spacing: 5px; font-weight: bold;">'
        f"{html.escape(code)}</div>"
        f"<p>This code will expire in {minutes} minutes.</p>"
        "<p>If you did not request this verification, please ignore this email.</p>"
        f"<p>Best Regards,<br>The {name} Team</p>"
        "</div>"
    )
