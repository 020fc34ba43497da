from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session, joinedload

from allocation import (
    AppliedBudgetRule,
    DashboardSnapshot,
    allowed_category_types,
    compute_dashboard,
    resolve_budget_rule,
    to_stored,
)
from models import (
    BudgetRule,
    Category,
    CategoryType,
    RecurringRule,
    Transaction,
    TransactionType,
)
from periods import Period, local_today
from recurrence import MaterializeResult, RecurringEngine
from schemas import BudgetRuleIn, CategoryIn, RecurringRuleIn, TransactionIn


logger = logging.getLogger(__name__)


class ContractLockedError(ValueError):
    """Raised when a schedule is stopped before its contractual end date."""


PREDEFINED_CATEGORIES: tuple[tuple[str, CategoryType, str, str], ...] = (
    ("Rent", CategoryType.needs, "#D32F2F", "Monthly rent or mortgage payments."),
    (
        "Groceries",
        CategoryType.needs,
        "#388E3C",
        "Food and household supplies from supermarkets.",
    ),
    (
        "Utilities (Gas, Electric, Water)",
        CategoryType.needs,
        "#06294B",
        "Monthly bills like gas, electricity, water, and internet.",
    ),
    (
        "Transport",
        CategoryType.needs,
        "#F57C00",
        "Costs for public transport, fuel, and car maintenance.",
    ),
    (
        "Eating Out",
        CategoryType.wants,
        "#E57BBE",
        "Expenses from restaurants, cafes, and take-away food.",
    ),
    (
        "Entertainment",
        CategoryType.wants,
        "#7B1FA2",
        "Spending on leisure like movies, concerts, and events.",
    ),
    (
        "Shopping (Non-essential)",
        CategoryType.wants,
        "#0EE1C9",
        "Purchases for non-essential items like clothing and gadgets.",
    ),
    (
        "General Savings",
        CategoryType.savings,
        "#B8D9EA",
        "General contributions to savings accounts or investments.",
    ),
    ("Salary", CategoryType.income, "#D1C323", "Primary income from employment."),
)

RULE_CATEGORY_TYPES = {
    TransactionType.income: frozenset({CategoryType.income}),
    TransactionType.expense: frozenset(
        {CategoryType.needs, CategoryType.wants, CategoryType.savings}
    ),
}


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Category]:
        stmt = select(Category).order_by(Category.type, Category.name)
        return list(self.session.scalars(stmt).all())

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise ValueError("Category not found")
        return category

    def _ensure_unique(
        self, name: str, category_type: CategoryType, exclude_id: Optional[int] = None
    ) -> None:
        stmt = select(Category.id).where(
            Category.type == category_type, Category.name == name
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        if self.session.scalar(stmt) is not None:
            raise ValueError("Category with this name already exists")

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        self._ensure_unique(name, data.type)
        category = Category(
            name=name,
            type=data.type,
            color=data.color,
            description=data.description,
            is_predefined=False,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryIn) -> Category:
        category = self.get(category_id)
        name = data.name.strip()
        self._ensure_unique(name, data.type, exclude_id=category.id)
        category.name = name
        category.type = data.type
        category.color = data.color
        category.description = data.description
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        """Delete a category with its schedules and everything they generated.

        Manually entered transactions survive with no category.
        """
        category = self.get(category_id)
        rule_ids = select(RecurringRule.id).where(
            RecurringRule.category_id == category.id
        )
        self.session.execute(
            delete(Transaction).where(Transaction.origin_rule_id.in_(rule_ids))
        )
        self.session.execute(
            delete(RecurringRule).where(RecurringRule.category_id == category.id)
        )
        self.session.execute(
            update(Transaction)
            .where(Transaction.category_id == category.id)
            .values(category_id=None)
        )
        self.session.execute(delete(Category).where(Category.id == category.id))
        self.session.commit()
        logger.info(f"category_deleted: category_id={category_id}")

    def seed_predefined(self) -> int:
        existing = {
            (row.type, row.name)
            for row in self.session.execute(select(Category.type, Category.name))
        }
        added = 0
        for name, category_type, color, description in PREDEFINED_CATEGORIES:
            if (category_type, name) in existing:
                continue
            self.session.add(
                Category(
                    name=name,
                    type=category_type,
                    color=color,
                    description=description,
                    is_predefined=True,
                )
            )
            added += 1
        if added:
            self.session.commit()
        return added


class TransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(
                joinedload(Transaction.category), joinedload(Transaction.origin_rule)
            )
            .order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn:
            raise ValueError("Transaction not found")
        return txn

    def _category_for(self, data: TransactionIn) -> Category:
        category = self.session.get(Category, data.category_id)
        if not category:
            raise ValueError("Category not found")
        if category.type not in allowed_category_types(data.kind):
            raise ValueError("Category type mismatch")
        return category

    def create(self, data: TransactionIn) -> Transaction:
        category = self._category_for(data)
        txn_type, amount_cents = to_stored(data.kind, data.amount_cents)
        txn = Transaction(
            description=data.description,
            amount_cents=amount_cents,
            type=txn_type,
            category_id=category.id,
            transaction_date=data.transaction_date,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        category = self._category_for(data)
        txn_type, amount_cents = to_stored(data.kind, data.amount_cents)
        txn.description = data.description
        txn.amount_cents = amount_cents
        txn.type = txn_type
        txn.category_id = category.id
        txn.transaction_date = data.transaction_date
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()


class RecurringRuleService:
    def __init__(self, session: Session, kind: TransactionType) -> None:
        self.session = session
        self.kind = kind

    def get(self, rule_id: int) -> RecurringRule:
        rule = self.session.get(RecurringRule, rule_id)
        if not rule or rule.type != self.kind:
            raise ValueError("Rule not found")
        return rule

    def list(self) -> list[RecurringRule]:
        stmt = (
            select(RecurringRule)
            .options(joinedload(RecurringRule.category))
            .where(RecurringRule.type == self.kind)
            .order_by(RecurringRule.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def _validate(self, data: RecurringRuleIn) -> None:
        category = self.session.get(Category, data.category_id)
        if not category:
            raise ValueError("Category not found")
        if category.type not in RULE_CATEGORY_TYPES[self.kind]:
            raise ValueError("Category type mismatch")
        if data.contract_end_date and self.kind != TransactionType.expense:
            raise ValueError("Contract end date only applies to expense schedules")

    def _clear_generated(self, rule: RecurringRule) -> None:
        self.session.execute(
            delete(Transaction).where(Transaction.origin_rule_id == rule.id)
        )
        rule.last_processed_date = None

    def create(self, data: RecurringRuleIn) -> RecurringRule:
        self._validate(data)
        rule = RecurringRule(type=self.kind, **data.model_dump())
        self.session.add(rule)
        self.session.commit()
        self.session.refresh(rule)
        return rule

    def update(self, rule_id: int, data: RecurringRuleIn) -> RecurringRule:
        """Apply ``data`` and drop the rule's history so it is regenerated."""
        rule = self.get(rule_id)
        self._validate(data)
        self._clear_generated(rule)
        for field, value in data.model_dump().items():
            setattr(rule, field, value)
        self.session.commit()
        self.session.refresh(rule)
        logger.info(f"recurring_rule_updated: rule_id={rule.id} history=reset")
        return rule

    def stop(self, rule_id: int, today: Optional[date] = None) -> RecurringRule:
        today = today or local_today()
        rule = self.get(rule_id)
        if rule.contract_end_date and rule.contract_end_date > today:
            raise ContractLockedError(
                f"Schedule is under contract until {rule.contract_end_date.isoformat()}"
            )
        if today < rule.start_date:
            raise ValueError("Cannot stop a schedule before it starts")
        self._clear_generated(rule)
        rule.end_date = today
        self.session.commit()
        self.session.refresh(rule)
        return rule

    def delete(self, rule_id: int) -> None:
        rule = self.get(rule_id)
        self.session.execute(
            delete(Transaction).where(Transaction.origin_rule_id == rule.id)
        )
        self.session.execute(delete(RecurringRule).where(RecurringRule.id == rule.id))
        self.session.commit()
        logger.info(f"recurring_rule_deleted: rule_id={rule_id}")

    def materialize_due(self, today: Optional[date] = None) -> MaterializeResult:
        return RecurringEngine(self.session).materialize_due(self.kind, today)


def materialize_all(
    session: Session, today: Optional[date] = None
) -> dict[TransactionType, MaterializeResult]:
    today = today or local_today()
    return {
        kind: RecurringRuleService(session, kind).materialize_due(today)
        for kind in (TransactionType.income, TransactionType.expense)
    }


class BudgetRuleService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[BudgetRule]:
        stmt = select(BudgetRule).order_by(
            BudgetRule.start_date.desc(), BudgetRule.id.desc()
        )
        return list(self.session.scalars(stmt).all())

    def get(self, rule_id: int) -> BudgetRule:
        rule = self.session.get(BudgetRule, rule_id)
        if not rule:
            raise ValueError("Budget rule not found")
        return rule

    def create(self, data: BudgetRuleIn) -> BudgetRule:
        rule = BudgetRule(**data.model_dump())
        self.session.add(rule)
        self.session.commit()
        self.session.refresh(rule)
        return rule

    def update(self, rule_id: int, data: BudgetRuleIn) -> BudgetRule:
        rule = self.get(rule_id)
        for field, value in data.model_dump().items():
            setattr(rule, field, value)
        self.session.commit()
        self.session.refresh(rule)
        return rule

    def delete(self, rule_id: int) -> None:
        rule = self.get(rule_id)
        self.session.delete(rule)
        self.session.commit()

    def active_for(self, on: date) -> AppliedBudgetRule:
        return resolve_budget_rule(self.list_all(), on)


class DashboardService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def snapshot(self, period: Period) -> DashboardSnapshot:
        transactions = self.session.scalars(select(Transaction)).all()
        return compute_dashboard(
            transactions,
            BudgetRuleService(self.session).list_all(),
            CategoryService(self.session).list_all(),
            period,
        )
