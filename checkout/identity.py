import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import OrderValidationError, PersistenceError
from .models import User

logger = logging.getLogger(__name__)


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def get_user(db: Session, user_id: int) -> Optional[User]:
    return db.get(User, user_id)


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.execute(select(User).where(User.email == normalize_email(email))).scalar_one_or_none()


def resolve_or_create_guest_identity(
    db: Session,
    email: Optional[str],
    *,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    phone: Optional[str] = None,
) -> int:
    """
    Find the buyer for a guest checkout by email, creating a password-less
    account when none exists. Runs in its own short transaction, before the
    order transaction opens.

    Not idempotent under concurrent retries: two racing checkouts for the
    same new email hit the unique index and the loser gets PersistenceError.
    """
    email = normalize_email(email)
    if not email:
        raise OrderValidationError("Email is required for guest checkout")

    try:
        with db.begin():
            user = get_user_by_email(db, email)
            if user is not None:
                return user.id

            user = User(
                email=email,
                password_hash=None,
                first_name=first_name or None,
                last_name=last_name or None,
                phone=phone or None,
            )
            db.add(user)
            db.flush()
            user_id = user.id

        logger.info("Created guest buyer id=%s email=%s", user_id, email)
        return user_id

    except SQLAlchemyError as e:
        logger.exception("Guest identity resolution failed email=%s error=%r", email, e)
        raise PersistenceError("Failed to resolve buyer") from e
