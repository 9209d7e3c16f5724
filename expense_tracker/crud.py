import uuid
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import and_, func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models, schemas
from .errors import NotFoundError
from .models import utcnow
from .utils import sanitize_input


# -------------------- Users --------------------

def create_user(db: Session, user: schemas.UserCreate, password_hash: str) -> models.User:
    if get_user_by_email(db, user.email):
        raise ValueError("email already registered")
    name = sanitize_input(user.name)
    if not name:
        raise ValueError("name must not be empty")
    db_user = models.User(name=name, email=user.email, password_hash=password_hash)
    db.add(db_user)
    try:
        db.commit()
    except IntegrityError as e:
        # lost a race against a concurrent signup for the same address
        db.rollback()
        raise ValueError("email already registered") from e
    db.refresh(db_user)
    return db_user


def get_user(db: Session, user_id: int) -> Optional[models.User]:
    return db.get(models.User, user_id)


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.email == email).first()


def set_password_hash(db: Session, user: models.User, password_hash: str) -> models.User:
    user.password_hash = password_hash
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def set_premium(db: Session, user_id: int) -> None:
    db.execute(update(models.User).where(models.User.id == user_id).values(is_premium=True))


def leaderboard(db: Session, limit: int = 100) -> List[models.User]:
    return (
        db.query(models.User)
        .order_by(models.User.total_amount.desc(), models.User.id)
        .limit(limit)
        .all()
    )


# -------------------- Reset tokens --------------------

def create_reset_token(db: Session, user_id: int, ttl_minutes: int = 0) -> models.ResetToken:
    now = utcnow()
    token = models.ResetToken(
        id=str(uuid.uuid4()),
        user_id=user_id,
        active=True,
        created_at=now,
        expires_at=now + timedelta(minutes=ttl_minutes) if ttl_minutes > 0 else None,
    )
    db.add(token)
    db.commit()
    db.refresh(token)
    return token


def get_reset_token(db: Session, token_id: str) -> Optional[models.ResetToken]:
    return db.get(models.ResetToken, token_id)


def deactivate_reset_token(db: Session, token_id: str, now: Optional[datetime] = None) -> bool:
    """Flip an active, unexpired token to inactive.

    Single conditional UPDATE; only one caller can ever see a row count of 1
    for a given token.
    """
    now = now or utcnow()
    result = db.execute(
        update(models.ResetToken)
        .where(
            models.ResetToken.id == token_id,
            models.ResetToken.active.is_(True),
            or_(models.ResetToken.expires_at.is_(None), models.ResetToken.expires_at > now),
        )
        .values(active=False)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def revoke_reset_token(db: Session, token_id: str) -> None:
    """Kill a token outright: inactive and already spent."""
    now = utcnow()
    db.execute(
        update(models.ResetToken)
        .where(models.ResetToken.id == token_id)
        .values(active=False, used_at=func.coalesce(models.ResetToken.used_at, now))
        .execution_options(synchronize_session=False)
    )
    db.commit()


def claim_reset_token(db: Session, token_id: str, now: Optional[datetime] = None) -> bool:
    """Record that a consumed token has been spent on a password change.

    Does not commit: the caller commits together with the new hash.
    """
    result = db.execute(
        update(models.ResetToken)
        .where(
            models.ResetToken.id == token_id,
            models.ResetToken.active.is_(False),
            models.ResetToken.used_at.is_(None),
        )
        .values(used_at=now or utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


# -------------------- Expenses --------------------

def create_expense(db: Session, user_id: int, expense: schemas.ExpenseCreate) -> models.Expense:
    category = sanitize_input(expense.category)
    if not category:
        raise ValueError("category must not be empty")
    description = sanitize_input(expense.description) or None
    db_expense = models.Expense(
        user_id=user_id,
        amount=expense.amount,
        category=category,
        description=description,
        date=expense.date,
    )
    db.add(db_expense)
    # total is bumped in SQL so concurrent inserts do not overwrite each other
    db.execute(
        update(models.User)
        .where(models.User.id == user_id)
        .values(total_amount=models.User.total_amount + expense.amount)
    )
    db.commit()
    db.refresh(db_expense)
    return db_expense


def list_expenses(db: Session, user_id: int, page: int = 1, page_size: int = 5) -> Tuple[List[models.Expense], int]:
    query = db.query(models.Expense).filter(models.Expense.user_id == user_id)
    total = query.count()
    items = (
        query.order_by(models.Expense.date.desc(), models.Expense.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return items, total


def all_expenses(db: Session, user_id: int) -> List[models.Expense]:
    return (
        db.query(models.Expense)
        .filter(models.Expense.user_id == user_id)
        .order_by(models.Expense.date.desc(), models.Expense.id.desc())
        .all()
    )


def delete_expense(db: Session, user_id: int, expense_id: int) -> models.Expense:
    expense = db.get(models.Expense, expense_id)
    # foreign expenses look exactly like missing ones
    if not expense or expense.user_id != user_id:
        raise NotFoundError("expense not found")
    db.execute(
        update(models.User)
        .where(models.User.id == user_id)
        .values(total_amount=models.User.total_amount - expense.amount)
    )
    db.delete(expense)
    db.commit()
    return expense


def update_expense(db: Session, user_id: int, expense_id: int, changes: schemas.ExpenseUpdate) -> models.Expense:
    expense = db.get(models.Expense, expense_id)
    if not expense or expense.user_id != user_id:
        raise NotFoundError("expense not found")
    fields = changes.model_dump(exclude_unset=True)
    if "category" in fields:
        category = sanitize_input(fields["category"] or "")
        if not category:
            raise ValueError("category must not be empty")
        expense.category = category
    if "description" in fields:
        expense.description = sanitize_input(fields["description"]) or None
    if fields.get("date") is not None:
        expense.date = fields["date"]
    if fields.get("amount") is not None and fields["amount"] != expense.amount:
        delta = fields["amount"] - expense.amount
        db.execute(
            update(models.User)
            .where(models.User.id == user_id)
            .values(total_amount=models.User.total_amount + delta)
        )
        expense.amount = fields["amount"]
    db.commit()
    db.refresh(expense)
    return expense


def category_breakdown(
    db: Session, user_id: int, start: Optional[date] = None, end: Optional[date] = None
) -> List[dict]:
    filters = [models.Expense.user_id == user_id]
    if start:
        filters.append(models.Expense.date >= start)
    if end:
        filters.append(models.Expense.date <= end)
    rows = (
        db.query(
            models.Expense.category,
            func.sum(models.Expense.amount).label("total"),
            func.count(models.Expense.id).label("count"),
        )
        .filter(and_(*filters))
        .group_by(models.Expense.category)
        .order_by(func.sum(models.Expense.amount).desc(), models.Expense.category)
        .all()
    )
    grand_total = sum(r.total for r in rows)
    return [
        {
            "category": r.category,
            "total": int(r.total),
            "count": int(r.count),
            "percentage": round(r.total * 100.0 / grand_total, 2) if grand_total else 0.0,
        }
        for r in rows
    ]


def _sum_between(db: Session, user_id: int, start: date, end: date) -> int:
    value = (
        db.query(func.coalesce(func.sum(models.Expense.amount), 0))
        .filter(
            models.Expense.user_id == user_id,
            models.Expense.date >= start,
            models.Expense.date <= end,
        )
        .scalar()
    )
    return int(value or 0)


def monthly_totals(db: Session, user_id: int, today: Optional[date] = None) -> dict:
    today = today or date.today()
    month_start = today.replace(day=1)
    prev_month_end = month_start - timedelta(days=1)
    prev_month_start = prev_month_end.replace(day=1)
    year_start = today.replace(month=1, day=1)
    return {
        "current_month": _sum_between(db, user_id, month_start, today),
        "previous_month": _sum_between(db, user_id, prev_month_start, prev_month_end),
        "year_to_date": _sum_between(db, user_id, year_start, today),
    }


# -------------------- Orders --------------------

def create_order(db: Session, user_id: int, order_id: str, amount: int, currency: str) -> models.Order:
    db_order = models.Order(user_id=user_id, order_id=order_id, amount=amount, currency=currency, status="pending")
    db.add(db_order)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ValueError("integrity error") from e
    db.refresh(db_order)
    return db_order


def get_order(db: Session, order_id: str) -> Optional[models.Order]:
    return db.query(models.Order).filter(models.Order.order_id == order_id).first()


def transition_order(db: Session, order_id: str, status: str, payment_id: Optional[str] = None) -> bool:
    """Move a pending order to ``status``; False when it was no longer pending.

    Does not commit.
    """
    values = {"status": status}
    if payment_id is not None:
        values["payment_id"] = payment_id
    result = db.execute(
        update(models.Order)
        .where(models.Order.order_id == order_id, models.Order.status == "pending")
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
