from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from .db import Base


def utcnow() -> datetime:
    # Naive UTC; SQLite drops tzinfo on the way in anyway
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(254), nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=False)
    is_premium = Column(Boolean, nullable=False, default=False)
    # running sum of the user's expense amounts, feeds the leaderboard
    total_amount = Column(Integer, nullable=False, default=0, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    expenses = relationship("Expense", back_populates="user")
    orders = relationship("Order", back_populates="user")
    reset_tokens = relationship("ResetToken", back_populates="user")


class ResetToken(Base):
    __tablename__ = "reset_tokens"

    # opaque uuid4 string, embedded in the reset link
    id = Column(String(36), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=True)
    # set exactly once, when the password change is applied
    used_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="reset_tokens")


class Expense(Base):
    __tablename__ = "expenses"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    category = Column(String(100), nullable=False, index=True)
    description = Column(String(200), nullable=True)
    date = Column(Date, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="expenses")


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    # gateway-side identifiers
    order_id = Column(String(255), nullable=False, unique=True, index=True)
    payment_id = Column(String(255), nullable=True)
    status = Column(String(16), nullable=False, default="pending")
    amount = Column(Integer, nullable=False)
    currency = Column(String(8), nullable=False, default="inr")
    created_at = Column(DateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="orders")
