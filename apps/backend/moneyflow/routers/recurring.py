from __future__ import annotations

from dataclasses import asdict
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from moneyflow import models
from moneyflow.core.database import get_db
from moneyflow.core.deps import get_current_user
from moneyflow.schemas import (
    EditFutureResultOut,
    GenerateDueReport,
    GenerateResultOut,
    RecurringBulkDelete,
    RecurringBulkDeleteResult,
    RecurringPreviewOut,
    RecurringRuleCreate,
    RecurringRuleOut,
    RecurringRuleUpdate,
    TransactionOut,
)
from moneyflow.services import GenerationEngine, RecurringRuleService, SeriesEditor


router = APIRouter(prefix="/recurring-transactions", tags=["recurring-transactions"])


def _parse_flag(value: Optional[bool | str]) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


@router.post("", response_model=RecurringRuleOut, status_code=201)
def create_recurring_rule(
    payload: RecurringRuleCreate,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return RecurringRuleService(db).create(current_user.id, payload)


@router.get("", response_model=list[RecurringRuleOut])
def list_recurring_rules(
    frequency: Optional[models.RecurringFrequency] = Query(None),
    is_active: Optional[bool | str] = Query(None, description="Filter by active flag when provided"),
    search: Optional[str] = Query(None, max_length=200),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return RecurringRuleService(db).get_all(
        current_user.id,
        frequency=frequency,
        is_active=_parse_flag(is_active),
        search=search,
    )


@router.post("/bulk-delete", response_model=RecurringBulkDeleteResult)
def bulk_delete_recurring_rules(
    payload: RecurringBulkDelete,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    deleted, failed = RecurringRuleService(db).bulk_delete(current_user.id, payload.ids)
    return RecurringBulkDeleteResult(deleted_count=deleted, failed_ids=failed)


@router.post("/generate-due", response_model=GenerateDueReport)
def generate_due_recurring_rules(
    as_of: Optional[date] = Query(None, description="Defaults to today in the configured timezone"),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    report = GenerationEngine(db).generate_due(as_of, owner_id=current_user.id)
    return GenerateDueReport.model_validate(asdict(report))


@router.get("/{rule_id}", response_model=RecurringRuleOut)
def get_recurring_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return RecurringRuleService(db).get(current_user.id, rule_id)


@router.patch("/{rule_id}", response_model=RecurringRuleOut)
def update_recurring_rule(
    rule_id: int,
    payload: RecurringRuleUpdate,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return RecurringRuleService(db).update(current_user.id, rule_id, payload)


@router.delete("/{rule_id}", status_code=204)
def delete_recurring_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    RecurringRuleService(db).remove(current_user.id, rule_id)
    return Response(status_code=204)


@router.patch("/{rule_id}/pause", response_model=RecurringRuleOut)
def pause_recurring_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return SeriesEditor(db).pause(current_user.id, rule_id)


@router.patch("/{rule_id}/resume", response_model=RecurringRuleOut)
def resume_recurring_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return SeriesEditor(db).resume(current_user.id, rule_id)


@router.patch("/{rule_id}/skip-next", response_model=RecurringRuleOut)
def skip_next_occurrence(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return SeriesEditor(db).skip_next(current_user.id, rule_id)


@router.post("/{rule_id}/generate", response_model=GenerateResultOut)
def generate_recurring_transactions(
    rule_id: int,
    generate_until_date: Optional[date] = Query(None, description="Defaults to today in the configured timezone"),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    result = GenerationEngine(db).generate_for_owner(current_user.id, rule_id, generate_until_date)
    return {"generated_count": result.generated_count, "transactions": result.transactions}


@router.post("/{rule_id}/edit-future", response_model=EditFutureResultOut)
def edit_future_occurrences(
    rule_id: int,
    payload: RecurringRuleUpdate,
    end_current: bool = Query(True, description="End the current series at the split point"),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    split = SeriesEditor(db).edit_future(current_user.id, rule_id, payload, end_current=end_current)
    return {"current": split.current, "successor": split.successor}


@router.get("/{rule_id}/preview", response_model=RecurringPreviewOut)
def preview_recurring_rule(
    rule_id: int,
    start: date = Query(...),
    end: date = Query(...),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    occurrences = RecurringRuleService(db).preview(current_user.id, rule_id, start, end)
    return RecurringPreviewOut(rule_id=rule_id, start=start, end=end, occurrences=occurrences)


@router.get("/{rule_id}/transactions", response_model=list[TransactionOut])
def list_generated_transactions(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    return RecurringRuleService(db).transactions(current_user.id, rule_id)
