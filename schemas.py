"""
Database Schemas

Pydantic models for the MongoDB collections and for the derived views built
on top of them. Collection names are the lowercase model name:
- User -> "user"
- Category -> "category"
- Transaction -> "transaction"
- Budget -> "budget"

Rollup totals are never stored. They live only on the *Rollup views and on
the monthly report.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, List, Literal, Optional

from pydantic import BaseModel, Field, PlainSerializer, field_validator

# Decimal in Python, plain number in JSON responses.
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]

EntryType = Literal["income", "expense"]


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    id: Optional[str] = Field(None, description="Document id")
    name: str = Field(..., description="Display name")
    email: str = Field(..., pattern=r".+@.+\..+", description="Contact email")
    role: Literal["admin", "user"] = Field("user", description="Access role")


class Category(BaseModel):
    """
    Categories collection schema
    Collection name: "category"
    """
    id: Optional[str] = Field(None, description="Document id")
    user_id: str = Field(..., description="Owner id")
    budget_id: Optional[str] = Field(None, description="Budget this category rolls up into")
    name: str = Field(..., description="Category name, e.g., Food, Rent, Salary")
    type: EntryType = Field(..., description="Income or expense")
    color: Optional[str] = Field(None, description="Hex color for UI tags")
    icon: Optional[str] = Field(None, description="Icon name for UI tags")


class Transaction(BaseModel):
    """
    Transactions collection schema
    Collection name: "transaction"
    """
    id: Optional[str] = Field(None, description="Document id")
    user_id: str = Field(..., description="Owner id")
    category_id: str = Field(..., description="Related category id")
    amount: Money = Field(..., ge=0, description="Amount of the transaction")
    type: EntryType = Field(..., description="Must equal the category type")
    date: datetime = Field(..., description="When the transaction occurred (UTC)")
    note: Optional[str] = Field(None, description="Short note or description")
    account: Optional[str] = Field(None, description="Account label, e.g., Checking")

    @field_validator("date")
    @classmethod
    def normalize_date(cls, value):
        return naive_utc(value)


class Budget(BaseModel):
    """
    Budgets collection schema
    Groups categories under a spending limit. ``spent`` is maintained by the
    caller and is not derived from the linked categories.
    Collection name: "budget"
    """
    id: Optional[str] = Field(None, description="Document id")
    user_id: str = Field(..., description="Owner id")
    name: str = Field(..., description="Budget name")
    start_date: datetime = Field(..., description="First day the budget applies")
    end_date: Optional[datetime] = Field(None, description="Last day the budget applies")
    limit: Money = Field(..., ge=0, description="Spending ceiling")
    spent: Money = Field(Decimal("0"), ge=0, description="Independently tracked spend")

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, value):
        return naive_utc(value)


# ---------- Derived views ----------

class CategoryRollup(Category):
    transactions: List[Transaction] = Field(default_factory=list)
    total: Money


class BudgetRollup(Budget):
    categories: List[CategoryRollup] = Field(default_factory=list)
    total: Money


class ReportCategory(BaseModel):
    category: str
    type: EntryType
    total: Money


class MonthlyReport(BaseModel):
    month: str = Field(..., description="Month in YYYY-MM format")
    total_income: Money
    total_expenses: Money
    categories: List[ReportCategory] = Field(default_factory=list)
