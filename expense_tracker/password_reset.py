"""One-time password reset tokens: issue, consume, redeem.

Lifecycle of a token::

    issue_reset ──> active ──consume_reset──> inactive ──update_password──> used

Each arrow is a single conditional UPDATE, so a token can be consumed once
and spent on exactly one password change no matter how many requests race
for it.
"""

import logging

from passlib.exc import PasswordValueError
from sqlalchemy.orm import Session

from . import crud
from .auth import hash_password
from .config import Settings
from .errors import InvalidStateError, NotFoundError, UpstreamError

logger = logging.getLogger(__name__)


def reset_url(settings: Settings, token_id: str) -> str:
    return f"{settings.reset_base_url}/resetpassword/{token_id}"


def issue_reset(db: Session, email: str, notifier, settings: Settings) -> bool:
    """Create a token for the account behind ``email`` and mail the link.

    Returns False, without touching the database, when no account uses the
    address; callers answer both cases identically.
    """
    user = crud.get_user_by_email(db, email)
    if not user:
        logger.info("Password reset requested for unknown email")
        return False

    token = crud.create_reset_token(db, user.id, ttl_minutes=settings.reset_token_ttl_minutes)
    try:
        notifier.send_password_reset(user.email, reset_url(settings, token.id))
    except UpstreamError:
        # an undelivered link must not stay redeemable
        crud.revoke_reset_token(db, token.id)
        logger.error("Password reset token for user %s revoked: notification failed", user.id)
        raise
    logger.info("Password reset token issued for user %s", user.id)
    return True


def consume_reset(db: Session, token_id: str) -> None:
    """Deactivate an active token, allowing one subsequent password update."""
    if crud.deactivate_reset_token(db, token_id):
        logger.info("Password reset token %s consumed", token_id[:8])
        return
    if crud.get_reset_token(db, token_id) is None:
        raise NotFoundError("password reset request not found")
    raise InvalidStateError("Invalid or expired password reset request")


def update_password(db: Session, token_id: str, new_password: str) -> None:
    """Rewrite the owner's credential hash using a consumed, unspent token."""
    token = crud.get_reset_token(db, token_id)
    if token is None:
        raise NotFoundError("password reset request not found")
    user = crud.get_user(db, token.user_id)
    if user is None:
        raise NotFoundError("User not found")

    try:
        new_hash = hash_password(new_password)
    except (PasswordValueError, ValueError) as exc:
        logger.error("Hashing failed for user %s: %s", user.id, exc)
        raise UpstreamError("Error updating password", status_code=500) from exc

    if not crud.claim_reset_token(db, token_id):
        db.rollback()
        raise InvalidStateError("password reset request is not open for a password change")
    # claim and new hash land in the same commit
    crud.set_password_hash(db, user, new_hash)
    logger.info("Password updated for user %s", user.id)
