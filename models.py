from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "Income"
    expense = "Expense"


class CategoryType(str, Enum):
    needs = "Needs"
    wants = "Wants"
    savings = "Savings"
    income = "Income"


def _values_enum(enum_cls: type[Enum], name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
    )


TRANSACTION_TYPE_ENUM = _values_enum(TransactionType, "transactiontype")
CATEGORY_TYPE_ENUM = _values_enum(CategoryType, "categorytype")

DEFAULT_CATEGORY_COLOR = "#CCCCCC"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[CategoryType] = mapped_column(CATEGORY_TYPE_ENUM, nullable=False)
    color: Mapped[str] = mapped_column(
        String(7), nullable=False, default=DEFAULT_CATEGORY_COLOR
    )
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_predefined: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category", passive_deletes=True
    )
    recurring_rules: Mapped[list["RecurringRule"]] = relationship(
        "RecurringRule", back_populates="category", passive_deletes=True
    )

    __table_args__ = (
        UniqueConstraint("type", "name", name="uq_category_type_name"),
    )


class RecurringRule(Base, TimestampMixin):
    __tablename__ = "recurring_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type: Mapped[TransactionType] = mapped_column(
        TRANSACTION_TYPE_ENUM, nullable=False
    )
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id", ondelete="CASCADE"), nullable=False
    )
    recurrence_day: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    contract_end_date: Mapped[Optional[date]] = mapped_column(Date)
    last_processed_date: Mapped[Optional[date]] = mapped_column(Date)

    category: Mapped["Category"] = relationship(
        "Category", back_populates="recurring_rules"
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction",
        back_populates="origin_rule",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint(
            "recurrence_day BETWEEN 1 AND 31", name="ck_rule_recurrence_day_range"
        ),
        CheckConstraint("amount_cents >= 0", name="ck_rule_amount_positive"),
        CheckConstraint("start_date <= end_date", name="ck_rule_date_order"),
        Index("ix_recurring_rules_type_start", "type", "start_date"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        TRANSACTION_TYPE_ENUM, nullable=False
    )
    category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL")
    )
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    origin_rule_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recurring_rules.id", ondelete="CASCADE")
    )
    occurrence_date: Mapped[Optional[date]] = mapped_column(Date)

    category: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="transactions"
    )
    origin_rule: Mapped[Optional["RecurringRule"]] = relationship(
        "RecurringRule", back_populates="transactions"
    )

    __table_args__ = (
        UniqueConstraint(
            "origin_rule_id",
            "occurrence_date",
            name="uq_txn_origin_occurrence",
        ),
        Index("ix_transactions_date", "transaction_date"),
        Index("ix_transactions_category_date", "category_id", "transaction_date"),
    )

    def _origin_of_type(self, kind: TransactionType) -> Optional[int]:
        if self.origin_rule_id is None or self.origin_rule is None:
            return None
        return self.origin_rule_id if self.origin_rule.type == kind else None

    @property
    def recurring_income_id(self) -> Optional[int]:
        return self._origin_of_type(TransactionType.income)

    @property
    def recurring_expense_id(self) -> Optional[int]:
        return self._origin_of_type(TransactionType.expense)

    @property
    def category_type(self) -> Optional[CategoryType]:
        return self.category.type if self.category else None


class BudgetRule(Base, TimestampMixin):
    __tablename__ = "budget_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    needs_ratio: Mapped[float] = mapped_column(Float, nullable=False)
    wants_ratio: Mapped[float] = mapped_column(Float, nullable=False)
    savings_ratio: Mapped[float] = mapped_column(Float, nullable=False)

    __table_args__ = (
        Index("ix_budget_rules_start", "start_date"),
    )
