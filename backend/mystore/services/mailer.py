"""Transactional email over Gmail SMTP authenticated with OAuth2."""
from __future__ import annotations

import asyncio
import base64
import logging
import time
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Any, Protocol

import aiosmtplib
import httpx

from mystore.core.config import Settings, get_settings
from mystore.core.errors import ErrorKind, ServiceError

logger = logging.getLogger(__name__)

AUTH_FAILURE_CODES = frozenset({530, 534, 535})
TOKEN_REFRESH_MARGIN_SECONDS = 60


@dataclass(slots=True)
class MailMessage:
    to: str
    subject: str
    text: str
    html: str | None = None
    from_address: str | None = None


@dataclass(slots=True)
class DeliveryReceipt:
    message_id: str
    accepted: list[str] = field(default_factory=list)
    response: str = ""


class Mailer(Protocol):
    async def send(self, message: MailMessage) -> DeliveryReceipt:
        ...


class MailDeliveryError(ServiceError):
    """Classified mail failure carrying provider diagnostics."""


def _gateway_error(message: str, **diagnostics: Any) -> MailDeliveryError:
    return MailDeliveryError(ErrorKind.GATEWAY, message, diagnostics=diagnostics)


class OAuth2TokenSource:
    """Refresh-token exchange with an in-memory cached access token."""

    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None,
        refresh_token: str | None,
        token_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self._token_url = token_url
        self._timeout = timeout
        self._transport = transport
        self._access_token: str | None = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    def invalidate(self) -> None:
        self._access_token = None
        self._expires_at = 0.0

    def _is_fresh(self) -> bool:
        return self._access_token is not None and time.monotonic() < self._expires_at - TOKEN_REFRESH_MARGIN_SECONDS

    async def get_access_token(self) -> str:
        if self._is_fresh():
            return self._access_token  # type: ignore[return-value]
        async with self._lock:
            if not self._is_fresh():
                await self._refresh()
            return self._access_token  # type: ignore[return-value]

    async def _refresh(self) -> None:
        if not (self._client_id and self._client_secret and self._refresh_token):
            raise _gateway_error("Mail OAuth2 credentials are not configured")

        payload = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "refresh_token": self._refresh_token,
            "grant_type": "refresh_token",
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._token_url, data=payload)
        except httpx.HTTPError as exc:
            logger.warning("OAuth2 token exchange failed: %s", exc)
            raise _gateway_error("Unable to obtain mail access token", error=str(exc)) from exc

        if response.status_code >= 400:
            logger.warning("OAuth2 token endpoint returned %s: %s", response.status_code, response.text)
            raise _gateway_error(
                "Unable to obtain mail access token",
                response_code=response.status_code,
                response=response.text,
            )

        body = response.json()
        access_token = body.get("access_token")
        if not access_token:
            raise _gateway_error("Unable to obtain mail access token", response=response.text)

        self._access_token = access_token
        self._expires_at = time.monotonic() + float(body.get("expires_in", 3600))
        logger.info("Refreshed mail access token (expires in %ss)", body.get("expires_in", 3600))


def xoauth2_string(user: str, access_token: str) -> str:
    raw = f"user={user}\x01auth=Bearer {access_token}\x01\x01"
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def classify_mail_error(error: BaseException) -> ErrorKind:
    if isinstance(error, aiosmtplib.SMTPAuthenticationError):
        return ErrorKind.AUTH
    if isinstance(error, aiosmtplib.SMTPResponseException) and error.code in AUTH_FAILURE_CODES:
        return ErrorKind.AUTH
    if isinstance(error, (aiosmtplib.SMTPTimeoutError, asyncio.TimeoutError, TimeoutError)):
        return ErrorKind.UNAVAILABLE
    return ErrorKind.GATEWAY


_KIND_MESSAGES = {
    ErrorKind.AUTH: "Mail provider rejected credentials",
    ErrorKind.UNAVAILABLE: "Mail provider timed out",
    ErrorKind.GATEWAY: "Mail delivery failed",
}


class SMTPMailer:
    """Send one message per connection; no retries."""

    def __init__(
        self,
        settings: Settings,
        token_source: OAuth2TokenSource | None = None,
        smtp_factory: Any = aiosmtplib.SMTP,
    ) -> None:
        self._settings = settings
        self._token_source = token_source or OAuth2TokenSource(
            settings.google_client_id,
            settings.google_client_secret,
            settings.google_refresh_token,
            settings.google_token_url,
        )
        self._smtp_factory = smtp_factory

    def build_message(self, message: MailMessage) -> EmailMessage:
        sender = message.from_address or self._settings.default_sender
        if not sender:
            raise _gateway_error("Mail sender is not configured")
        email = EmailMessage()
        email["From"] = sender
        email["To"] = message.to
        email["Subject"] = message.subject
        email["Message-ID"] = make_msgid(domain=sender.rsplit("@", 1)[-1].rstrip(">"))
        email.set_content(message.text)
        if message.html:
            email.add_alternative(message.html, subtype="html")
        return email

    async def send(self, message: MailMessage) -> DeliveryReceipt:
        if not self._settings.mail_user:
            raise _gateway_error("Mail user is not configured")
        email = self.build_message(message)
        access_token = await self._token_source.get_access_token()

        settings = self._settings
        smtp = self._smtp_factory(
            hostname=settings.smtp_host,
            port=settings.smtp_port,
            use_tls=True,
            timeout=settings.mail_socket_timeout_seconds,
        )
        command = "CONNECT"
        try:
            # connect() waits for the server greeting as well
            await smtp.connect(
                timeout=settings.mail_connection_timeout_seconds + settings.mail_greeting_timeout_seconds
            )
            command = "EHLO"
            await smtp.ehlo()
            command = "AUTH XOAUTH2"
            await self._authenticate(smtp, access_token)
            command = "NOOP"
            await smtp.noop()
            command = "DATA"
            errors, response = await smtp.send_message(email)
            command = "QUIT"
            await smtp.quit()
        except MailDeliveryError:
            raise
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as exc:
            raise self._map_failure(exc, command) from exc
        finally:
            if smtp.is_connected:
                smtp.close()

        accepted = [address for address in [message.to] if address not in errors]
        logger.info("Mail %s delivered to %s", email["Message-ID"], message.to)
        return DeliveryReceipt(message_id=email["Message-ID"], accepted=accepted, response=response)

    async def _authenticate(self, smtp: Any, access_token: str) -> None:
        auth_string = xoauth2_string(self._settings.mail_user or "", access_token)
        response = await smtp.execute_command(b"AUTH", b"XOAUTH2", auth_string.encode("ascii"))
        if response.code == 334:
            # provider sends a base64 error challenge; an empty reply finishes the exchange
            response = await smtp.execute_command(b"")
        if response.code != 235:
            raise aiosmtplib.SMTPAuthenticationError(response.code, response.message)

    def _map_failure(self, exc: BaseException, command: str) -> MailDeliveryError:
        kind = classify_mail_error(exc)
        diagnostics = {
            "command": command,
            "response_code": getattr(exc, "code", None),
            "response": getattr(exc, "message", None) or str(exc),
            "error": exc.__class__.__name__,
        }
        logger.warning(
            "Mail delivery failed during %s (kind=%s, code=%s): %s",
            command,
            kind.value,
            diagnostics["response_code"],
            diagnostics["response"],
        )
        if kind is ErrorKind.AUTH:
            self._token_source.invalidate()
        return MailDeliveryError(kind, _KIND_MESSAGES[kind], diagnostics=diagnostics)


_mailer: SMTPMailer | None = None


def get_default_mailer() -> SMTPMailer:
    global _mailer
    if _mailer is None:
        _mailer = SMTPMailer(get_settings())
    return _mailer
