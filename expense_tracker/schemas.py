from datetime import date as Date
from typing import List, Optional

from pydantic import BaseModel, Field, PositiveInt, field_validator
from pydantic.config import ConfigDict


def normalize_email(value: str) -> str:
    value = (value or "").strip().lower()
    local, sep, domain = value.partition("@")
    if not sep or not local or "." not in domain:
        raise ValueError("invalid email address")
    return value


class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., max_length=254)
    password: str = Field(..., min_length=6, max_length=128)

    @field_validator("email")
    def valid_email(cls, v: str):
        return normalize_email(v)


class UserRead(BaseModel):
    id: int
    name: str
    email: str
    is_premium: bool = False
    total_amount: int = 0

    model_config = ConfigDict(from_attributes=True)


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator("email")
    def valid_email(cls, v: str):
        return (v or "").strip().lower()


class PasswordChange(BaseModel):
    # validated in the route so missing fields answer 400, not 422
    current_password: Optional[str] = None
    new_password: Optional[str] = None


class TokenResponse(BaseModel):
    message: str
    token: str


class MessageResponse(BaseModel):
    message: str


class ForgotPasswordRequest(BaseModel):
    email: str

    @field_validator("email")
    def valid_email(cls, v: str):
        return (v or "").strip().lower()


class ExpenseCreate(BaseModel):
    amount: PositiveInt
    category: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=200)
    date: Date


class ExpenseUpdate(BaseModel):
    amount: Optional[PositiveInt] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=200)
    date: Optional[Date] = None


class ExpenseRead(BaseModel):
    id: int
    user_id: int
    amount: int
    category: str
    description: Optional[str] = None
    date: Date

    model_config = ConfigDict(from_attributes=True)


class ExpensePage(BaseModel):
    expenses: List[ExpenseRead]
    total: int
    current_page: int
    has_next_page: bool
    next_page: int
    has_previous_page: bool
    previous_page: int
    last_page: int


class CategoryShare(BaseModel):
    category: str
    total: int
    count: int
    percentage: float


class MonthlySummary(BaseModel):
    current_month: int
    previous_month: int
    year_to_date: int


class GatewayOrder(BaseModel):
    id: str
    amount: int
    currency: str
    client_secret: Optional[str] = None


class PurchaseResponse(BaseModel):
    order: GatewayOrder
    key_id: str


class TransactionUpdate(BaseModel):
    order_id: str = Field(..., min_length=1)
    payment_id: str = Field(..., min_length=1)


class TransactionFailure(BaseModel):
    order_id: str = Field(..., min_length=1)


class OrderRead(BaseModel):
    id: int
    order_id: str
    payment_id: Optional[str] = None
    status: str
    amount: int
    currency: str

    model_config = ConfigDict(from_attributes=True)


class LeaderboardEntry(BaseModel):
    rank: int
    name: str
    total_expenses: int
