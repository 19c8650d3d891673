from __future__ import annotations

import base64
from http.client import HTTPException
import logging
import re
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

LOGGER = logging.getLogger(__name__)


class SmsSendError(RuntimeError):
    pass


class TwilioSmsSender:
    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_phone: str,
        app_name: str,
        ttl_seconds: int,
        default_country_code: str = "+1",
        timeout: float = 10.0,
    ) -> None:
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from_phone = from_phone
        self._app_name = app_name
        self._ttl_seconds = ttl_seconds
        self._default_country_code = default_country_code
        self._timeout = timeout

    def send_code(self, to_phone: str, code: str) -> None:
        if not self._account_sid or not self._auth_token or not self._from_phone:
            raise SmsSendError("Twilio is not configured")

        to_number = normalize_e164(to_phone, self._default_country_code)
        from_number = normalize_e164(self._from_phone, self._default_country_code)
        body = _build_body(code, self._app_name, self._ttl_seconds)
        LOGGER.info("Sending verification SMS to=%s from=%s", to_number, from_number)
        endpoint = (
            "https://api.twilio.com/2010-04-01/Accounts/"
            f"{self._account_sid}/Messages.json"
        )
        payload = urlencode(
            {"To": to_number, "From": from_number, "Body": body}
        ).encode("utf-8")
        token = base64.b64encode(
            f"{self._account_sid}:{self._auth_token}".encode("utf-8")
        ).decode("ascii")
        request = Request(
            endpoint,
            data=payload,
            headers={
                "Authorization": f"Basic {token}",
                "Content-Type": "application/x-www-form-urlencoded",
            },
            method="POST",
        )
        try:
            with urlopen(request, timeout=self._timeout) as response:
                response.read()
        except HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="replace")
            LOGGER.error(
                "Twilio API error to=%s from=%s response=%s",
                to_number,
                from_number,
                error_body,
            )
            raise SmsSendError("Failed to send verification SMS") from exc
        except URLError as exc:
            raise SmsSendError("Failed to reach Twilio API") from exc
        except (OSError, HTTPException) as exc:
            LOGGER.error("Twilio request failed to=%s: %s", to_number, exc)
            raise SmsSendError("Failed to reach Twilio API") from exc


def normalize_e164(phone_number: str, default_country_code: str) -> str:
    raw = phone_number.strip()
    digits = re.sub(r"\D", "", raw)
    if not digits:
        raise SmsSendError("Phone number is missing")
    if len(digits) == 10 and not raw.startswith("+"):
        default_code = re.sub(r"\D", "", default_country_code)
        if not default_code:
            raise SmsSendError("Default country code is not configured")
        digits = f"{default_code}{digits}"
    if len(digits) < 10 or len(digits) > 15:
        raise SmsSendError("Phone number must include a valid country code")
    return f"+{digits}"


def _build_body(code: str, app_name: str, ttl_seconds: int) -> str:
    minutes = max(1, ttl_seconds // 60)
    return (
        f"Your {app_name} verification code is: {code}."
        f" It will expire in {minutes} minutes."
    )
