"""SMTP transport adapter and OAuth2 token source."""
from __future__ import annotations

import asyncio
from types import SimpleNamespace

import aiosmtplib
import httpx
import pytest

from mystore.core.config import Settings
from mystore.core.errors import ErrorKind, ServiceError
from mystore.services.mailer import (
    MailMessage,
    OAuth2TokenSource,
    SMTPMailer,
    classify_mail_error,
    xoauth2_string,
)

TOKEN_URL = "https://oauth2.example.test/token"


def _token_source(handler, **overrides) -> OAuth2TokenSource:
    options = {
        "client_id": "client-id",
        "client_secret": "client-secret",
        "refresh_token": "refresh-token",
        "token_url": TOKEN_URL,
        "transport": httpx.MockTransport(handler),
    }
    options.update(overrides)
    return OAuth2TokenSource(**options)


async def test_access_token_is_cached_until_invalidated():
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"access_token": f"token-{len(calls)}", "expires_in": 3599})

    source = _token_source(handler)

    assert await source.get_access_token() == "token-1"
    assert await source.get_access_token() == "token-1"
    source.invalidate()
    assert await source.get_access_token() == "token-2"
    assert len(calls) == 2
    assert b"grant_type=refresh_token" in calls[0].content


async def test_concurrent_callers_share_one_refresh():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, json={"access_token": "shared", "expires_in": 3599})

    source = _token_source(handler)
    tokens = await asyncio.gather(*(source.get_access_token() for _ in range(5)))

    assert set(tokens) == {"shared"}
    assert calls == 1


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(400, json={"error": "invalid_grant"}),
        httpx.Response(200, json={"access_token": ""}),
    ],
)
async def test_failed_token_exchange_is_gateway(response):
    source = _token_source(lambda request: response)

    with pytest.raises(ServiceError) as excinfo:
        await source.get_access_token()

    assert excinfo.value.kind is ErrorKind.GATEWAY


async def test_missing_oauth_configuration_is_gateway():
    source = _token_source(lambda request: httpx.Response(200), refresh_token=None)

    with pytest.raises(ServiceError) as excinfo:
        await source.get_access_token()

    assert excinfo.value.kind is ErrorKind.GATEWAY


class StubTokenSource:
    def __init__(self) -> None:
        self.invalidated = False

    async def get_access_token(self) -> str:
        return "access-token"

    def invalidate(self) -> None:
        self.invalidated = True


class FakeSMTP:
    """Stands in for aiosmtplib.SMTP; ``fail_on`` names the step that raises."""

    def __init__(self, fail_on: str | None = None, auth_code: int = 235, **options) -> None:
        self.options = options
        self.fail_on = fail_on
        self.auth_code = auth_code
        self.commands: list[tuple[bytes, ...]] = []
        self.sent = []
        self.is_connected = False
        self.closed = False

    def _maybe_fail(self, step: str) -> None:
        if self.fail_on == step:
            if step == "connect":
                raise aiosmtplib.SMTPConnectTimeoutError("Timed out connecting to smtp.gmail.com")
            if step == "send":
                raise aiosmtplib.SMTPResponseException(550, "5.7.1 Message rejected")
            raise aiosmtplib.SMTPReadTimeoutError("Timed out waiting for server response")

    async def connect(self, timeout=None):
        self.connect_timeout = timeout
        self._maybe_fail("connect")
        self.is_connected = True

    async def ehlo(self):
        self._maybe_fail("ehlo")

    async def execute_command(self, *args):
        self.commands.append(args)
        if args and args[0] == b"AUTH" and self.auth_code != 235:
            return SimpleNamespace(code=334, message="eyJzdGF0dXMiOiI0MDAifQ==")
        if args == (b"",):
            return SimpleNamespace(code=self.auth_code, message="5.7.8 Username and Password not accepted")
        return SimpleNamespace(code=235, message="2.7.0 Accepted")

    async def noop(self):
        self._maybe_fail("noop")

    async def send_message(self, message):
        self._maybe_fail("send")
        self.sent.append(message)
        return {}, "2.0.0 OK"

    async def quit(self):
        self.is_connected = False

    def close(self):
        self.closed = True
        self.is_connected = False


def _settings(**overrides) -> Settings:
    values = {"mail_user": "sender@example.com", "mail_from_name": "MyStore App"}
    values.update(overrides)
    return Settings(**values)


def _mailer(fake: FakeSMTP, token_source=None, **settings):
    def factory(**options):
        fake.options = options
        return fake

    return SMTPMailer(_settings(**settings), token_source=token_source or StubTokenSource(), smtp_factory=factory)


async def test_send_applies_default_sender_and_bounded_timeouts():
    fake = FakeSMTP()
    mailer = _mailer(fake)

    receipt = await mailer.send(MailMessage(to="user@example.com", subject="Hi", text="Hello"))

    sent = fake.sent[0]
    assert sent["From"] == "MyStore App <sender@example.com>"
    assert sent["To"] == "user@example.com"
    assert receipt.accepted == ["user@example.com"]
    assert receipt.message_id == sent["Message-ID"]
    assert fake.options["timeout"] == 5.0
    assert fake.options["use_tls"] is True
    assert fake.connect_timeout == 10.0
    assert fake.commands[0] == (b"AUTH", b"XOAUTH2", xoauth2_string("sender@example.com", "access-token").encode())


async def test_send_keeps_explicit_sender():
    fake = FakeSMTP()

    await _mailer(fake).send(
        MailMessage(to="user@example.com", subject="Hi", text="Hello", from_address="Support <help@example.com>")
    )

    assert fake.sent[0]["From"] == "Support <help@example.com>"


async def test_rejected_credentials_are_auth_failure_and_drop_cached_token():
    fake = FakeSMTP(auth_code=535)
    tokens = StubTokenSource()

    with pytest.raises(ServiceError) as excinfo:
        await _mailer(fake, token_source=tokens).send(MailMessage(to="user@example.com", subject="Hi", text="Hello"))

    error = excinfo.value
    assert error.kind is ErrorKind.AUTH
    assert error.diagnostics["command"] == "AUTH XOAUTH2"
    assert error.diagnostics["response_code"] == 535
    assert tokens.invalidated
    assert fake.closed


@pytest.mark.parametrize(("step", "command"), [("connect", "CONNECT"), ("noop", "NOOP")])
async def test_timeouts_are_unavailable(step, command):
    fake = FakeSMTP(fail_on=step)

    with pytest.raises(ServiceError) as excinfo:
        await _mailer(fake).send(MailMessage(to="user@example.com", subject="Hi", text="Hello"))

    assert excinfo.value.kind is ErrorKind.UNAVAILABLE
    assert excinfo.value.diagnostics["command"] == command


async def test_provider_rejection_is_gateway_with_diagnostics():
    fake = FakeSMTP(fail_on="send")

    with pytest.raises(ServiceError) as excinfo:
        await _mailer(fake).send(MailMessage(to="user@example.com", subject="Hi", text="Hello"))

    error = excinfo.value
    assert error.kind is ErrorKind.GATEWAY
    assert error.message == "Mail delivery failed"
    assert error.diagnostics == {
        "command": "DATA",
        "response_code": 550,
        "response": "5.7.1 Message rejected",
        "error": "SMTPResponseException",
    }


async def test_missing_mail_user_fails_before_connecting():
    fake = FakeSMTP()

    with pytest.raises(ServiceError) as excinfo:
        await _mailer(fake, mail_user=None).send(MailMessage(to="user@example.com", subject="Hi", text="Hello"))

    assert excinfo.value.kind is ErrorKind.GATEWAY
    assert fake.sent == []


@pytest.mark.parametrize(
    ("error", "kind"),
    [
        (aiosmtplib.SMTPAuthenticationError(535, "bad credentials"), ErrorKind.AUTH),
        (aiosmtplib.SMTPResponseException(534, "web login required"), ErrorKind.AUTH),
        (aiosmtplib.SMTPTimeoutError("timed out"), ErrorKind.UNAVAILABLE),
        (asyncio.TimeoutError(), ErrorKind.UNAVAILABLE),
        (aiosmtplib.SMTPServerDisconnected("gone"), ErrorKind.GATEWAY),
        (ConnectionRefusedError(), ErrorKind.GATEWAY),
    ],
)
def test_classify_mail_error(error, kind):
    assert classify_mail_error(error) is kind
