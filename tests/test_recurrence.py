from datetime import date
from typing import Optional

from sqlalchemy import create_engine, delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import Base
from models import Category, CategoryType, RecurringRule, Transaction, TransactionType
from recurrence import RecurringEngine, due_occurrences, initial_cursor


def _category(session: Session, category_type: CategoryType = CategoryType.needs):
    category = Category(name="Rent", type=category_type, color="#D32F2F")
    session.add(category)
    session.flush()
    return category


def _rule(
    session: Session,
    category: Category,
    *,
    kind: TransactionType = TransactionType.expense,
    amount_cents: int = 100_000,
    recurrence_day: int = 1,
    start_date: date = date(2025, 1, 1),
    end_date: date = date(2025, 12, 31),
    last_processed_date: Optional[date] = None,
) -> RecurringRule:
    rule = RecurringRule(
        type=kind,
        description="Rent",
        amount_cents=amount_cents,
        category_id=category.id,
        recurrence_day=recurrence_day,
        start_date=start_date,
        end_date=end_date,
        last_processed_date=last_processed_date,
    )
    session.add(rule)
    session.commit()
    return rule


def _transaction_dates(session: Session, rule_id: int) -> list[date]:
    stmt = (
        select(Transaction.transaction_date)
        .where(Transaction.origin_rule_id == rule_id)
        .order_by(Transaction.transaction_date)
    )
    return list(session.scalars(stmt).all())


def test_initial_cursor_follows_last_processed_month():
    rule = RecurringRule(start_date=date(2024, 11, 20), last_processed_date=None)
    assert initial_cursor(rule) == date(2024, 11, 1)
    rule.last_processed_date = date(2024, 12, 5)
    assert initial_cursor(rule) == date(2025, 1, 1)


def test_due_occurrences_clamp_to_month_end():
    rule = RecurringRule(
        recurrence_day=31,
        start_date=date(2024, 1, 1),
        end_date=date(2024, 12, 31),
        last_processed_date=None,
    )
    assert list(due_occurrences(rule, date(2024, 4, 30))) == [
        date(2024, 1, 31),
        date(2024, 2, 29),
        date(2024, 3, 31),
        date(2024, 4, 30),
    ]


def test_materialize_clamps_day_31_in_february():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        category = _category(session)
        rule = _rule(
            session,
            category,
            recurrence_day=31,
            start_date=date(2025, 1, 1),
        )

        created = RecurringEngine(session).materialize_rule(rule, date(2025, 3, 15))

        assert created == 2
        assert _transaction_dates(session, rule.id) == [
            date(2025, 1, 31),
            date(2025, 2, 28),
        ]


def test_materialize_creates_one_transaction_per_due_month():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        category = _category(session)
        rule = _rule(session, category, recurrence_day=15)

        result = RecurringEngine(session).materialize_due(
            TransactionType.expense, date(2025, 4, 20)
        )

        assert result.processed_rule_count == 1
        assert result.created_transaction_count == 4
        assert _transaction_dates(session, rule.id) == [
            date(2025, 1, 15),
            date(2025, 2, 15),
            date(2025, 3, 15),
            date(2025, 4, 15),
        ]
        assert rule.last_processed_date == date(2025, 4, 20)


def test_materialize_is_idempotent_for_same_day():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        category = _category(session)
        _rule(session, category)
        engine_ = RecurringEngine(session)

        first = engine_.materialize_due(TransactionType.expense, date(2025, 3, 1))
        second = engine_.materialize_due(TransactionType.expense, date(2025, 3, 1))

        assert first.created_transaction_count == 3
        assert second.processed_rule_count == 1
        assert second.created_transaction_count == 0
        assert session.scalar(select(func.count(Transaction.id))) == 3


def test_materialize_normalizes_signs():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        rent = _category(session)
        salary = Category(name="Salary", type=CategoryType.income, color="#D1C323")
        session.add(salary)
        session.flush()
        expense_rule = _rule(session, rent, amount_cents=120_000)
        income_rule = _rule(
            session, salary, kind=TransactionType.income, amount_cents=350_000
        )

        engine_ = RecurringEngine(session)
        engine_.materialize_due(TransactionType.expense, date(2025, 2, 10))
        engine_.materialize_due(TransactionType.income, date(2025, 2, 10))

        expenses = session.scalars(
            select(Transaction).where(Transaction.origin_rule_id == expense_rule.id)
        ).all()
        incomes = session.scalars(
            select(Transaction).where(Transaction.origin_rule_id == income_rule.id)
        ).all()
        assert [t.amount_cents for t in expenses] == [-120_000, -120_000]
        assert all(t.type == TransactionType.expense for t in expenses)
        assert [t.amount_cents for t in incomes] == [350_000, 350_000]
        assert all(t.type == TransactionType.income for t in incomes)
        assert incomes[0].recurring_income_id == income_rule.id
        assert incomes[0].recurring_expense_id is None


def test_materialize_skips_rule_with_missing_category():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        category = _category(session)
        rule = _rule(session, category)
        # Foreign keys are not enforced on this engine, so the rule is orphaned.
        session.execute(delete(Category).where(Category.id == category.id))
        session.commit()

        result = RecurringEngine(session).materialize_due(
            TransactionType.expense, date(2025, 3, 1)
        )

        assert result.processed_rule_count == 0
        assert result.created_transaction_count == 0
        assert rule.last_processed_date is None
        assert session.scalar(select(func.count(Transaction.id))) == 0


def test_materialize_advances_cursor_when_nothing_is_due_yet():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        category = _category(session)
        rule = _rule(
            session, category, recurrence_day=28, start_date=date(2025, 3, 1)
        )

        result = RecurringEngine(session).materialize_due(
            TransactionType.expense, date(2025, 3, 10)
        )

        assert result.processed_rule_count == 1
        assert result.created_transaction_count == 0
        assert rule.last_processed_date == date(2025, 3, 10)


def test_materialize_stops_at_end_date_month():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        category = _category(session)
        rule = _rule(
            session,
            category,
            recurrence_day=20,
            start_date=date(2025, 1, 1),
            end_date=date(2025, 2, 10),
        )

        created = RecurringEngine(session).materialize_rule(rule, date(2025, 6, 1))

        assert created == 2
        assert _transaction_dates(session, rule.id) == [
            date(2025, 1, 20),
            date(2025, 2, 20),
        ]


def test_materialize_ignores_rules_not_started():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        category = _category(session)
        rule = _rule(
            session,
            category,
            start_date=date(2025, 8, 1),
            end_date=date(2026, 8, 1),
        )

        result = RecurringEngine(session).materialize_due(
            TransactionType.expense, date(2025, 7, 1)
        )

        assert result.processed_rule_count == 0
        assert rule.last_processed_date is None


def test_cursor_conflict_rolls_back_rule():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine, expire_on_commit=False) as session:
        category = _category(session)
        rule = _rule(session, category)
        # Another run moves the cursor after this copy of the rule was read.
        session.execute(
            update(RecurringRule)
            .where(RecurringRule.id == rule.id)
            .values(last_processed_date=date(2025, 2, 1))
            .execution_options(synchronize_session=False)
        )
        session.commit()
        assert rule.last_processed_date is None

        created = RecurringEngine(session).materialize_rule(rule, date(2025, 3, 20))

        assert created is None
        assert session.scalar(select(func.count(Transaction.id))) == 0
        stored = session.scalar(
            select(RecurringRule.last_processed_date).where(
                RecurringRule.id == rule.id
            )
        )
        assert stored == date(2025, 2, 1)


def test_existing_occurrence_is_not_posted_twice():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        category = _category(session)
        rule = _rule(session, category)
        session.add(
            Transaction(
                description="Rent",
                amount_cents=-100_000,
                type=TransactionType.expense,
                category_id=category.id,
                transaction_date=date(2025, 1, 1),
                origin_rule_id=rule.id,
                occurrence_date=date(2025, 1, 1),
            )
        )
        session.commit()

        created = RecurringEngine(session).materialize_rule(rule, date(2025, 2, 5))

        assert created == 1
        assert _transaction_dates(session, rule.id) == [
            date(2025, 1, 1),
            date(2025, 2, 1),
        ]


def test_cursor_never_moves_backwards():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        category = _category(session)
        rule = _rule(session, category, recurrence_day=5)
        engine_ = RecurringEngine(session)

        assert engine_.materialize_rule(rule, date(2025, 5, 10)) == 5
        assert engine_.materialize_rule(rule, date(2025, 3, 1)) == 0

        assert rule.last_processed_date == date(2025, 5, 10)
        assert session.scalar(select(func.count(Transaction.id))) == 5

        # Nothing already posted is regenerated on the next regular run.
        assert engine_.materialize_rule(rule, date(2025, 5, 31)) == 0
        assert session.scalar(select(func.count(Transaction.id))) == 5


def test_storage_failure_on_one_rule_does_not_stop_batch(monkeypatch):
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        category = _category(session)
        broken = _rule(session, category)
        healthy = _rule(session, category, recurrence_day=10)
        broken_id = broken.id
        post_occurrence = RecurringEngine._post_occurrence

        def failing_post(self, rule, occurrence_date):
            if rule.id == broken_id:
                raise SQLAlchemyError("insert failed")
            return post_occurrence(self, rule, occurrence_date)

        monkeypatch.setattr(RecurringEngine, "_post_occurrence", failing_post)

        result = RecurringEngine(session).materialize_due(
            TransactionType.expense, date(2025, 3, 15)
        )

        assert result.failed_rule_count == 1
        assert result.processed_rule_count == 1
        assert result.created_transaction_count == 3
        assert _transaction_dates(session, broken_id) == []
        assert broken.last_processed_date is None
        assert _transaction_dates(session, healthy.id) == [
            date(2025, 1, 10),
            date(2025, 2, 10),
            date(2025, 3, 10),
        ]
