"""Budget rule resolution and per-period dashboard aggregation.

Everything here is pure: callers hand in already-loaded transactions,
categories and budget rules (ORM rows or anything exposing the same
attributes) and get immutable snapshots back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Iterable, Optional, Protocol

from models import DEFAULT_CATEGORY_COLOR, CategoryType, TransactionType
from periods import Period


class BudgetRuleLike(Protocol):
    id: Optional[int]
    name: str
    start_date: date
    end_date: Optional[date]
    needs_ratio: float
    wants_ratio: float
    savings_ratio: float


@dataclass(frozen=True)
class AppliedBudgetRule:
    name: str
    needs_ratio: float
    wants_ratio: float
    savings_ratio: float
    id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @property
    def is_fallback(self) -> bool:
        return self.id is None

    @classmethod
    def from_rule(cls, rule: BudgetRuleLike) -> AppliedBudgetRule:
        return cls(
            id=rule.id,
            name=rule.name,
            start_date=rule.start_date,
            end_date=rule.end_date,
            needs_ratio=float(rule.needs_ratio),
            wants_ratio=float(rule.wants_ratio),
            savings_ratio=float(rule.savings_ratio),
        )


FALLBACK_BUDGET_RULE = AppliedBudgetRule(
    name="Fallback Rule", needs_ratio=0.5, wants_ratio=0.3, savings_ratio=0.2
)


def resolve_budget_rule(
    rules: Iterable[BudgetRuleLike], period_start: date
) -> AppliedBudgetRule:
    """Pick the rule governing a period starting on ``period_start``.

    The rule with the latest start date wins; equal start dates fall back to
    the highest id. Without any applicable rule the 50/30/20 fallback applies.
    """
    applicable = [
        rule
        for rule in rules
        if rule.start_date <= period_start
        and (rule.end_date is None or period_start <= rule.end_date)
    ]
    if not applicable:
        return FALLBACK_BUDGET_RULE
    best = max(applicable, key=lambda r: (r.start_date, r.id or 0))
    return AppliedBudgetRule.from_rule(best)


class DisplayKind(str, Enum):
    income = "income"
    expense = "expense"
    transfer = "transfer"
    withdrawal = "withdrawal"


def classify_transaction(
    txn_type: TransactionType, category_type: Optional[CategoryType]
) -> DisplayKind:
    """Map the stored two-type model onto the four kinds the UI shows.

    ========  ===========  ==========
    type      category     kind
    ========  ===========  ==========
    Income    not Savings  income
    Income    Savings      withdrawal
    Expense   not Savings  expense
    Expense   Savings      transfer
    ========  ===========  ==========
    """
    is_savings = category_type == CategoryType.savings
    if txn_type == TransactionType.income:
        return DisplayKind.withdrawal if is_savings else DisplayKind.income
    return DisplayKind.transfer if is_savings else DisplayKind.expense


def to_stored(kind: DisplayKind, magnitude_cents: int) -> tuple[TransactionType, int]:
    magnitude = abs(magnitude_cents)
    if kind in (DisplayKind.income, DisplayKind.withdrawal):
        return TransactionType.income, magnitude
    return TransactionType.expense, -magnitude


def allowed_category_types(kind: DisplayKind) -> frozenset[CategoryType]:
    if kind == DisplayKind.income:
        return frozenset({CategoryType.income})
    if kind == DisplayKind.expense:
        return frozenset({CategoryType.needs, CategoryType.wants})
    return frozenset({CategoryType.savings})


@dataclass(frozen=True)
class AllocationLine:
    actual_cents: int
    target_cents: int
    percent: float
    ratio: float


def _allocation_line(actual: int, income: int, ratio: float) -> AllocationLine:
    target = income * ratio
    percent = (actual / target * 100) if target else 0.0
    return AllocationLine(
        actual_cents=actual, target_cents=round(target), percent=percent, ratio=ratio
    )


@dataclass(frozen=True)
class IncomeAllocation:
    period_income_cents: int
    rule: AppliedBudgetRule
    needs: AllocationLine
    wants: AllocationLine
    savings: AllocationLine


@dataclass(frozen=True)
class IncomeSpentGauge:
    spent_cents: int
    income_cents: int
    percent_spent: float
    is_surplus: bool
    surplus_cents: int


@dataclass(frozen=True)
class CategorySpend:
    category_id: Optional[int]
    name: str
    color: str
    total_cents: int


@dataclass(frozen=True)
class PeriodSummary:
    income_cents: int
    spent_cents: int
    savings_cents: int
    transaction_count: int


@dataclass(frozen=True)
class DashboardSnapshot:
    period: Period
    balance_cents: int
    savings_pot_cents: int
    summary: PeriodSummary
    allocation: IncomeAllocation
    gauge: IncomeSpentGauge
    spending_by_category: list[CategorySpend] = field(default_factory=list)


def income_spent_gauge(spent_cents: int, income_cents: int) -> IncomeSpentGauge:
    percent = (spent_cents / income_cents * 100) if income_cents > 0 else 0.0
    is_surplus = spent_cents > income_cents
    return IncomeSpentGauge(
        spent_cents=spent_cents,
        income_cents=income_cents,
        percent_spent=percent,
        is_surplus=is_surplus,
        surplus_cents=spent_cents - income_cents if is_surplus else 0,
    )


def compute_dashboard(
    transactions: Iterable,
    budget_rules: Iterable[BudgetRuleLike],
    categories: Iterable,
    period: Period,
) -> DashboardSnapshot:
    """Aggregate every dashboard figure for ``period`` in one pass.

    Balance and savings pot are lifetime running totals up to ``period.end``;
    the remaining figures only count transactions dated inside the period.
    """
    rule = resolve_budget_rule(budget_rules, period.start)
    categories_by_id = {c.id: c for c in categories}

    balance = 0
    pot = 0
    income = 0
    spent = 0
    savings = 0
    needs = 0
    wants = 0
    count = 0
    spend_by_category: dict[Optional[int], int] = {}

    for txn in transactions:
        if txn.transaction_date > period.end:
            continue
        amount = txn.amount_cents
        category = categories_by_id.get(txn.category_id)
        category_type = category.type if category else None
        is_savings = category_type == CategoryType.savings

        balance += amount
        if is_savings:
            pot -= amount

        if not period.contains(txn.transaction_date):
            continue
        count += 1
        if txn.type == TransactionType.income:
            if not is_savings:
                income += amount
        elif is_savings:
            savings -= amount
        else:
            spent -= amount
            if category_type == CategoryType.needs:
                needs -= amount
            elif category_type == CategoryType.wants:
                wants -= amount
            key = txn.category_id if category else None
            spend_by_category[key] = spend_by_category.get(key, 0) - amount

    breakdown = []
    for category_id, total in spend_by_category.items():
        category = categories_by_id.get(category_id)
        breakdown.append(
            CategorySpend(
                category_id=category_id,
                name=category.name if category else "Uncategorized",
                color=(category.color if category else None) or DEFAULT_CATEGORY_COLOR,
                total_cents=total,
            )
        )
    breakdown.sort(key=lambda row: (-row.total_cents, row.name))

    allocation = IncomeAllocation(
        period_income_cents=income,
        rule=rule,
        needs=_allocation_line(needs, income, rule.needs_ratio),
        wants=_allocation_line(wants, income, rule.wants_ratio),
        savings=_allocation_line(savings, income, rule.savings_ratio),
    )
    return DashboardSnapshot(
        period=period,
        balance_cents=balance,
        savings_pot_cents=pot,
        summary=PeriodSummary(
            income_cents=income,
            spent_cents=spent,
            savings_cents=savings,
            transaction_count=count,
        ),
        allocation=allocation,
        gauge=income_spent_gauge(spent, income),
        spending_by_category=breakdown,
    )
