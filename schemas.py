from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from allocation import DisplayKind
from models import CategoryType, TransactionType


RATIO_SUM_TOLERANCE = 0.0001


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: CategoryType
    color: str = Field(default="#CCCCCC", pattern=r"^#[0-9A-Fa-f]{6}$")
    description: Optional[str] = None


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: CategoryType
    color: str
    description: Optional[str]
    is_predefined: bool


class TransactionIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=255)
    kind: DisplayKind
    amount_cents: int = Field(..., gt=0)
    category_id: int
    transaction_date: date


class TransactionOut(BaseModel):
    id: int
    description: str
    amount_cents: int
    type: TransactionType
    kind: DisplayKind
    category_id: Optional[int]
    category_name: Optional[str]
    category_type: Optional[CategoryType]
    transaction_date: date
    recurring_income_id: Optional[int]
    recurring_expense_id: Optional[int]


class RecurringRuleIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=255)
    amount_cents: int = Field(..., ge=0)
    category_id: int
    recurrence_day: int = Field(..., ge=1, le=31)
    start_date: date
    end_date: date
    contract_end_date: Optional[date] = None

    @model_validator(mode="after")
    def _check_dates(self) -> "RecurringRuleIn":
        if self.start_date > self.end_date:
            raise ValueError("Start date must be on or before end date")
        return self


class RecurringRuleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: TransactionType
    description: str
    amount_cents: int
    category_id: int
    recurrence_day: int
    start_date: date
    end_date: date
    contract_end_date: Optional[date]
    last_processed_date: Optional[date]


class MaterializeOut(BaseModel):
    processed_rule_count: int
    created_transaction_count: int
    failed_rule_count: int = 0


class BudgetRuleIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    start_date: date
    end_date: Optional[date] = None
    needs_ratio: float = Field(..., ge=0, le=1)
    wants_ratio: float = Field(..., ge=0, le=1)
    savings_ratio: float = Field(..., ge=0, le=1)

    @model_validator(mode="after")
    def _check_rule(self) -> "BudgetRuleIn":
        if self.end_date is not None and self.start_date > self.end_date:
            raise ValueError("Start date must be on or before end date")
        total = self.needs_ratio + self.wants_ratio + self.savings_ratio
        if abs(total - 1) > RATIO_SUM_TOLERANCE:
            raise ValueError("Needs, wants and savings ratios must add up to 100%")
        return self


class BudgetRuleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int]
    name: str
    start_date: Optional[date]
    end_date: Optional[date]
    needs_ratio: float
    wants_ratio: float
    savings_ratio: float
