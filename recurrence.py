import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterator, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import Category, RecurringRule, Transaction, TransactionType
from periods import add_months, clamp_day, local_today, month_start


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MaterializeResult:
    processed_rule_count: int = 0
    created_transaction_count: int = 0
    failed_rule_count: int = 0


def occurrence_for_month(rule: RecurringRule, cursor: date) -> date:
    return clamp_day(cursor.year, cursor.month, rule.recurrence_day)


def initial_cursor(rule: RecurringRule) -> date:
    """First month that still needs processing for ``rule``."""
    if rule.last_processed_date is None:
        return month_start(rule.start_date)
    return add_months(month_start(rule.last_processed_date), 1)


def due_occurrences(rule: RecurringRule, today: date) -> Iterator[date]:
    cursor = initial_cursor(rule)
    last_month = month_start(rule.end_date)
    while cursor <= today and cursor <= last_month:
        candidate = occurrence_for_month(rule, cursor)
        if candidate <= today:
            yield candidate
        cursor = add_months(cursor, 1)


def signed_amount_cents(rule: RecurringRule) -> int:
    if rule.type == TransactionType.expense:
        return -abs(rule.amount_cents)
    return rule.amount_cents


class RecurringEngine:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_rules(
        self, kind: TransactionType, started_on_or_before: date
    ) -> list[RecurringRule]:
        stmt = (
            select(RecurringRule)
            .where(
                RecurringRule.type == kind,
                RecurringRule.start_date <= started_on_or_before,
            )
            .order_by(RecurringRule.id)
        )
        return list(self.session.scalars(stmt).all())

    def materialize_rule(
        self, rule: RecurringRule, today: Optional[date] = None
    ) -> Optional[int]:
        """Post every missing occurrence of ``rule`` up to ``today``.

        Returns the number of transactions created, or ``None`` when the rule
        was skipped (missing category, or its cursor moved under us).
        Inserts and the cursor update are committed together.
        """
        today = today or local_today()
        rule_id = rule.id
        category_exists = self.session.scalar(
            select(Category.id).where(Category.id == rule.category_id)
        )
        if category_exists is None:
            logger.warning(
                f"materialize_rule: rule_id={rule_id} skipped reason=missing_category "
                f"category_id={rule.category_id}"
            )
            return None

        read_cursor = rule.last_processed_date
        if read_cursor is not None and today < read_cursor:
            # The cursor never moves backwards.
            logger.warning(
                f"materialize_rule: rule_id={rule_id} skipped reason=stale_today "
                f"today={today.isoformat()} cursor={read_cursor.isoformat()}"
            )
            return 0

        created = 0
        try:
            for occurrence in due_occurrences(rule, today):
                if self._post_occurrence(rule, occurrence):
                    created += 1
            if not self._advance_cursor(rule_id, read_cursor, today):
                self.session.rollback()
                logger.warning(
                    f"materialize_rule: rule_id={rule_id} skipped reason=cursor_conflict"
                )
                return None
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.exception(f"materialize_rule: rule_id={rule_id} failed")
            raise
        logger.debug(f"materialize_rule: rule_id={rule_id} created={created}")
        return created

    def materialize_due(
        self, kind: TransactionType, today: Optional[date] = None
    ) -> MaterializeResult:
        today = today or local_today()
        processed = 0
        created = 0
        failed = 0
        for rule in self.list_rules(kind, today):
            try:
                count = self.materialize_rule(rule, today)
            except SQLAlchemyError:
                # Already rolled back and logged; later rules still run.
                failed += 1
                continue
            if count is None:
                continue
            processed += 1
            created += count
        logger.info(
            f"materialize_due: kind={kind.value} today={today.isoformat()} "
            f"processed={processed} created={created} failed={failed}"
        )
        return MaterializeResult(
            processed_rule_count=processed,
            created_transaction_count=created,
            failed_rule_count=failed,
        )

    def _advance_cursor(
        self, rule_id: int, expected: Optional[date], today: date
    ) -> bool:
        # Compare-and-swap: only move the cursor we read at the start of the run.
        if expected is None:
            unchanged = RecurringRule.last_processed_date.is_(None)
        else:
            unchanged = RecurringRule.last_processed_date == expected
        result = self.session.execute(
            update(RecurringRule)
            .where(RecurringRule.id == rule_id, unchanged)
            .values(last_processed_date=today)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    def _post_occurrence(self, rule: RecurringRule, occurrence_date: date) -> bool:
        exists_stmt = (
            select(Transaction.id)
            .where(
                Transaction.origin_rule_id == rule.id,
                Transaction.occurrence_date == occurrence_date,
            )
            .limit(1)
        )
        if self.session.execute(exists_stmt).scalar_one_or_none():
            return False

        txn = Transaction(
            description=rule.description,
            amount_cents=signed_amount_cents(rule),
            type=rule.type,
            category_id=rule.category_id,
            transaction_date=occurrence_date,
            origin_rule_id=rule.id,
            occurrence_date=occurrence_date,
        )
        self.session.add(txn)
        self.session.flush()
        return True
