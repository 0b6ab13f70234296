"""Session tokens and the password recovery handshake."""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from sqlalchemy import delete, or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from mystore.core.config import get_settings
from mystore.core.errors import ErrorKind, ServiceError
from mystore.core.security import (
    PasswordHasher,
    SessionSigner,
    digest_recovery_token,
    generate_recovery_token,
)
from mystore.db.base import utcnow
from mystore.db.errors import storage_errors
from mystore.models.recovery_token import RecoveryToken
from mystore.models.user import User
from mystore.schemas.auth import TokenResponse, TokenUser
from mystore.services.mailer import DeliveryReceipt, Mailer, MailMessage
from mystore.services.users import get_user_by_email

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
INVALID_RECOVERY_MESSAGE = "Invalid recovery request"


def sign_token(user: User) -> TokenResponse:
    settings = get_settings()
    token = SessionSigner().dumps({"sub": user.id, "role": user.role.value})
    return TokenResponse(
        token=token,
        expires_in=settings.access_token_expire_minutes * 60,
        user=TokenUser(id=user.id, email=user.email, role=user.role),
    )


def verify_token(token: str) -> dict[str, Any]:
    """Return the claims of a session token or raise an auth failure."""
    settings = get_settings()
    try:
        claims = SessionSigner().loads(token, max_age=settings.access_token_expire_minutes * 60)
    except ValueError as exc:
        raise ServiceError(ErrorKind.AUTH, "Invalid session") from exc
    if not isinstance(claims, dict) or "sub" not in claims:
        raise ServiceError(ErrorKind.AUTH, "Invalid session")
    return claims


def _recovery_message(email: str, token: str) -> MailMessage:
    settings = get_settings()
    link = f"{settings.recovery_url}?token={token}"
    minutes = settings.recovery_token_expire_minutes
    return MailMessage(
        to=email,
        subject="Password recovery",
        text=(
            "We received a request to reset your password.\n\n"
            f"Open this link to choose a new one: {link}\n\n"
            f"The link expires in {minutes} minutes. If you did not ask for it, ignore this email."
        ),
        html=(
            "<p>We received a request to reset your password.</p>"
            f'<p><a href="{link}">Choose a new password</a></p>'
            f"<p>The link expires in {minutes} minutes.</p>"
        ),
    )


async def send_recovery(session: AsyncSession, mailer: Mailer, email: str) -> DeliveryReceipt:
    """Issue a fresh recovery token for ``email`` and mail it.

    Raises NOT_FOUND for unknown accounts; callers facing clients must mask it.
    Earlier unconsumed tokens of the user are dropped so only the newest link
    works. The new token is committed before sending, so a mail failure leaves
    it valid.
    """
    settings = get_settings()
    user = await get_user_by_email(session, email)
    token = generate_recovery_token()

    with storage_errors("creating recovery token", subject="recovery token"):
        await session.execute(
            delete(RecoveryToken).where(
                RecoveryToken.user_id == user.id,
                RecoveryToken.consumed_at.is_(None),
            )
        )
        session.add(
            RecoveryToken(
                token_digest=digest_recovery_token(token),
                user_id=user.id,
                expires_at=utcnow() + timedelta(minutes=settings.recovery_token_expire_minutes),
            )
        )
        await session.commit()

    try:
        receipt = await mailer.send(_recovery_message(user.email, token))
    except ServiceError as exc:
        logger.warning("Recovery email for user %s failed: %s", user.id, exc.diagnostics or exc.message)
        raise ServiceError(
            ErrorKind.GATEWAY,
            "Failed to send recovery email",
            diagnostics={"cause": exc.kind.value, **exc.diagnostics},
        ) from exc

    logger.info("Recovery email sent to user %s", user.id)
    return receipt


async def change_password(session: AsyncSession, token: str, new_password: str) -> dict[str, str]:
    """Consume ``token`` and set the owner's password in one transaction.

    The conditional update only matches an unconsumed, unexpired token, so of
    several concurrent calls with the same token exactly one succeeds.
    """
    if len(new_password) < MIN_PASSWORD_LENGTH:
        raise ServiceError.validation(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    password_hash = PasswordHasher.hash(new_password)
    now = utcnow()
    consume = (
        update(RecoveryToken)
        .where(
            RecoveryToken.token_digest == digest_recovery_token(token),
            RecoveryToken.consumed_at.is_(None),
            RecoveryToken.expires_at > now,
        )
        .values(consumed_at=now)
        .returning(RecoveryToken.user_id)
        .execution_options(synchronize_session=False)
    )

    with storage_errors("changing password"):
        try:
            user_id = (await session.execute(consume)).scalar_one_or_none()
            if user_id is None:
                raise ServiceError.bad_request(INVALID_RECOVERY_MESSAGE)
            await session.execute(
                update(User)
                .where(User.id == user_id)
                .values({User.password_hash: password_hash, User.updated_at: now})
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        except Exception:
            await session.rollback()
            raise

    logger.info("Password changed through recovery for user %s", user_id)
    return {"message": "Password updated"}


async def purge_recovery_tokens(session: AsyncSession) -> int:
    """Delete consumed or expired recovery tokens."""
    with storage_errors("purging recovery tokens", subject="recovery token"):
        result = await session.execute(
            delete(RecoveryToken)
            .where(or_(RecoveryToken.consumed_at.is_not(None), RecoveryToken.expires_at <= utcnow()))
            .execution_options(synchronize_session=False)
        )
        await session.commit()
    return result.rowcount or 0
