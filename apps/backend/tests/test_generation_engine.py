from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import date

import pytest
from sqlalchemy import update

from moneyflow import models
from moneyflow.models import RecurringFrequency as F
from moneyflow.services import GenerationEngine, SeriesEditor, TransactionMaterializer, plan_catch_up
from moneyflow.services.errors import GenerationConflict, RuleInactive, RuleNotFound


def _occurrence_dates(db, rule_id):
    rows = (
        db.query(models.Transaction.occurred_at)
        .filter(models.Transaction.recurring_rule_id == rule_id)
        .order_by(models.Transaction.occurred_at)
        .all()
    )
    return [r[0] for r in rows]


class TestPlanCatchUp:
    def _plan(self, **kwargs):
        params = dict(
            frequency=F.MONTHLY,
            interval=1,
            start_date=date(2024, 1, 1),
            end_date=None,
            next_run_date=date(2024, 1, 1),
            last_run_date=None,
            run_count=0,
            as_of=date(2024, 3, 15),
        )
        params.update(kwargs)
        return plan_catch_up(**params)

    def test_backfills_every_missed_occurrence(self):
        plan = self._plan()
        assert plan.occurrences == [date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1)]
        assert plan.next_run_date == date(2024, 4, 1)
        assert plan.last_run_date == date(2024, 3, 1)
        assert plan.run_count == 3
        assert plan.is_active is True

    def test_nothing_due_before_start(self):
        plan = self._plan(start_date=date(2024, 6, 1), next_run_date=date(2024, 6, 1))
        assert plan.occurrences == []
        assert plan.next_run_date == date(2024, 6, 1)
        assert plan.is_active is True

    def test_end_date_inclusive_and_deactivates(self):
        plan = self._plan(end_date=date(2024, 2, 1), as_of=date(2024, 12, 31))
        assert plan.occurrences == [date(2024, 1, 1), date(2024, 2, 1)]
        assert plan.next_run_date == date(2024, 3, 1)
        assert plan.is_active is False

    def test_cursor_before_start_is_stepped_without_emitting(self):
        plan = self._plan(
            frequency=F.DAILY,
            start_date=date(2024, 1, 3),
            next_run_date=date(2024, 1, 1),
            as_of=date(2024, 1, 4),
        )
        assert plan.occurrences == [date(2024, 1, 3), date(2024, 1, 4)]
        assert plan.run_count == 2

    def test_inputs_are_not_mutated_and_plan_is_repeatable(self):
        first = self._plan()
        second = self._plan()
        assert first == second


def test_backfill_then_idempotent_then_deactivate(db_session, make_rule):
    rule = make_rule(end_date=date(2024, 4, 1))
    engine = GenerationEngine(db_session)

    result = engine.generate(rule, date(2024, 3, 15))
    assert result.generated_count == 3
    assert [t.occurred_at for t in result.transactions] == [date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1)]
    assert rule.next_run_date == date(2024, 4, 1)
    assert rule.last_run_date == date(2024, 3, 1)
    assert rule.run_count == 3
    assert rule.is_active is True

    again = engine.generate(rule, date(2024, 3, 15))
    assert again.generated_count == 0
    assert rule.run_count == 3

    final = engine.generate(rule, date(2024, 5, 1))
    assert final.generated_count == 1
    assert final.transactions[0].occurred_at == date(2024, 4, 1)
    assert rule.next_run_date == date(2024, 5, 1)
    assert rule.is_active is False
    assert rule.run_count == 4
    assert _occurrence_dates(db_session, rule.id) == [
        date(2024, 1, 1),
        date(2024, 2, 1),
        date(2024, 3, 1),
        date(2024, 4, 1),
    ]


def test_transactions_copy_the_template(db_session, make_rule, demo_user, expense_category):
    rule = make_rule(template={"notes": "flat 3A", "payment_method": "card", "reference": "LEASE-7"})
    result = GenerationEngine(db_session).generate(rule, date(2024, 1, 1))

    tx = result.transactions[0]
    assert tx.user_id == demo_user.id
    assert tx.recurring_rule_id == rule.id
    assert float(tx.amount) == 1500.0
    assert tx.type == models.FlowDirection.EXPENSE
    assert tx.category_id == expense_category.id
    assert tx.description == "Rent"
    assert tx.notes == "flat 3A"
    assert tx.tags == ["home"]
    assert tx.payment_method == "card"
    assert tx.reference == "LEASE-7"
    assert tx.currency == "MYR"


def test_generated_dates_stay_within_bounds_and_cursor_never_moves_back(db_session, make_rule):
    rule = make_rule(
        frequency="weekly",
        start_date=date(2024, 1, 3),
        end_date=date(2024, 3, 1),
    )
    engine = GenerationEngine(db_session)
    cursors = [rule.next_run_date]
    for as_of in (date(2024, 1, 20), date(2024, 1, 10), date(2024, 2, 14), date(2024, 12, 31)):
        if not rule.is_active:
            break
        engine.generate(rule, as_of)
        cursors.append(rule.next_run_date)
        for d in _occurrence_dates(db_session, rule.id):
            assert rule.start_date <= d <= rule.end_date

    assert cursors == sorted(cursors)
    dates = _occurrence_dates(db_session, rule.id)
    assert len(dates) == len(set(dates)) == rule.run_count
    assert dates[-1] == date(2024, 2, 28)
    assert rule.is_active is False


def test_no_write_when_nothing_is_due(db_session, make_rule):
    rule = make_rule(start_date=date(2030, 1, 1))
    before = rule.updated_at

    result = GenerationEngine(db_session).generate(rule, date(2024, 1, 1))

    assert result.generated_count == 0
    assert rule.updated_at == before
    assert rule.next_run_date == date(2030, 1, 1)


def test_inactive_rule_rejected(db_session, make_rule, demo_user):
    rule = make_rule()
    SeriesEditor(db_session).pause(demo_user.id, rule.id)

    with pytest.raises(RuleInactive):
        GenerationEngine(db_session).generate(rule, date(2024, 3, 1))
    assert _occurrence_dates(db_session, rule.id) == []


def test_deleted_rule_not_found(db_session, make_rule, demo_user):
    rule = make_rule()
    engine = GenerationEngine(db_session)
    engine.rules.remove(demo_user.id, rule.id)

    with pytest.raises(RuleNotFound):
        engine.generate_for_owner(demo_user.id, rule.id, date(2024, 3, 1))
    with pytest.raises(RuleNotFound):
        engine.generate(rule, date(2024, 3, 1))


class _FailOnSecond(TransactionMaterializer):
    def __init__(self, db):
        super().__init__(db)
        self.calls = 0

    def create(self, rule, occurred_at):
        self.calls += 1
        if self.calls == 2:
            raise RuntimeError("disk full")
        return super().create(rule, occurred_at)


def test_failure_mid_backfill_rolls_back_rows_and_cursor(db_session, make_rule):
    rule = make_rule()
    engine = GenerationEngine(db_session, materializer=_FailOnSecond(db_session))

    with pytest.raises(RuntimeError):
        engine.generate(rule, date(2024, 3, 15))

    assert _occurrence_dates(db_session, rule.id) == []
    assert rule.next_run_date == date(2024, 1, 1)
    assert rule.run_count == 0
    assert rule.last_run_date is None

    # a clean retry resumes from the original cursor
    retry = GenerationEngine(db_session).generate(rule, date(2024, 3, 15))
    assert retry.generated_count == 3


class _AdvanceBehindOurBack(TransactionMaterializer):
    """Moves the rule's run count as if another worker had committed first."""

    def create(self, rule, occurred_at):
        self.db.execute(
            update(models.RecurringRule)
            .where(models.RecurringRule.id == rule.id)
            .values(run_count=models.RecurringRule.run_count + 7)
            .execution_options(synchronize_session=False)
        )
        return super().create(rule, occurred_at)


def test_cursor_compare_and_swap_conflict(db_session, make_rule):
    rule = make_rule()
    engine = GenerationEngine(db_session, materializer=_AdvanceBehindOurBack(db_session))

    with pytest.raises(GenerationConflict):
        engine.generate(rule, date(2024, 2, 15))

    assert _occurrence_dates(db_session, rule.id) == []
    assert rule.run_count == 0
    assert rule.next_run_date == date(2024, 1, 1)


def test_duplicate_occurrence_surfaces_as_conflict(db_session, make_rule, demo_user):
    rule = make_rule()
    db_session.add(
        models.Transaction(
            user_id=demo_user.id,
            occurred_at=date(2024, 1, 1),
            type=models.FlowDirection.EXPENSE,
            amount=1500,
            currency="MYR",
            description="Rent",
            tags=[],
            recurring_rule_id=rule.id,
        )
    )
    db_session.commit()

    with pytest.raises(GenerationConflict):
        GenerationEngine(db_session).generate(rule, date(2024, 2, 15))

    assert _occurrence_dates(db_session, rule.id) == [date(2024, 1, 1)]
    assert rule.next_run_date == date(2024, 1, 1)


def test_concurrent_generates_produce_each_occurrence_once(db_session, session_factory, make_rule, demo_user):
    rule = make_rule()
    rule_id, owner_id = rule.id, demo_user.id

    def _run():
        session = session_factory()
        try:
            return GenerationEngine(session).generate_for_owner(owner_id, rule_id, date(2024, 3, 15)).generated_count
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=2) as pool:
        counts = sorted(pool.map(lambda _: _run(), range(2)))

    assert counts == [0, 3]
    db_session.expire_all()
    assert _occurrence_dates(db_session, rule_id) == [date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1)]
    assert db_session.get(models.RecurringRule, rule_id).run_count == 3


class _PausedElsewhere(TransactionMaterializer):
    """Commits a pause from another connection just before the first row is written."""

    def __init__(self, db, other_session):
        super().__init__(db)
        self.other = other_session
        self.paused = False

    def create(self, rule, occurred_at):
        if not self.paused:
            self.other.execute(
                update(models.RecurringRule)
                .where(models.RecurringRule.id == rule.id)
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            )
            self.other.commit()
            self.paused = True
        return super().create(rule, occurred_at)


def test_pause_committed_mid_generate_wins(db_session, session_factory, make_rule):
    rule = make_rule()
    other = session_factory()
    try:
        engine = GenerationEngine(db_session, materializer=_PausedElsewhere(db_session, other))
        with pytest.raises(GenerationConflict):
            engine.generate(rule, date(2024, 3, 15))
    finally:
        other.close()

    assert rule.is_active is False
    assert rule.next_run_date == date(2024, 1, 1)
    assert _occurrence_dates(db_session, rule.id) == []


def test_overflowing_step_ends_the_series(db_session, make_rule):
    rule = make_rule(frequency="yearly", interval=1000, start_date=date(9500, 1, 1))

    result = GenerationEngine(db_session).generate(rule, date(9500, 6, 1))

    assert [t.occurred_at for t in result.transactions] == [date(9500, 1, 1)]
    assert rule.next_run_date == date.max
    assert rule.is_active is False
    assert rule.run_count == 1


def test_planner_stops_at_calendar_end():
    plan = plan_catch_up(
        frequency=F.DAILY,
        interval=1,
        start_date=date(9999, 12, 29),
        end_date=None,
        next_run_date=date(9999, 12, 29),
        last_run_date=None,
        run_count=0,
        as_of=date.max,
    )
    assert plan.occurrences == [date(9999, 12, 29), date(9999, 12, 30)]
    assert plan.next_run_date == date.max
    assert plan.is_active is False
