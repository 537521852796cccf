"""Sequence service - validation, construction and trigger matching."""

from __future__ import annotations

from typing import Any, Iterable

from ..errors import ValidationError
from ..models.base import new_id
from ..schemas import ACTIVITY_TYPES, Activity, ActivitySequence, SequenceCreate, SequenceTrigger
from ..schemas.common import parse_input, utcnow
from ..engine.context import ExecutionContext
from ..engine.evaluator import conditions_hold

# Sequences whose triggers are evaluated against activity events
EVENT_DRIVEN = {"automatic", "event_based"}

# Post-processing event → trigger types it can fire
EVENT_TRIGGERS = {
    "logged": {"activity_logged", "activity_completed"},
    "completed": {"activity_completed", "field_changed", "stage_changed"},
    "score": {"score_threshold"},
}

STAGE_FIELD = "custom_fields.stage"


def validate_sequence_data(data: Any) -> SequenceCreate:
    """Parse and validate sequence input; raises ValidationError."""
    payload = parse_input(SequenceCreate, data)
    if not payload.name.strip():
        raise ValidationError("Sequence name is required", field="name")
    if not payload.steps:
        raise ValidationError("Sequence must have at least one step", field="steps")

    for index, step in enumerate(payload.steps):
        config = step.configuration or {}
        where = f"steps.{index}"
        if step.type == "create_activity":
            if config.get("type") not in ACTIVITY_TYPES:
                raise ValidationError(f"{where}: create_activity needs a valid activity type", field=where)
            if not str(config.get("subject", "")).strip():
                raise ValidationError(f"{where}: create_activity needs a subject", field=where)
        elif step.type == "send_email" and not str(config.get("subject", "")).strip():
            raise ValidationError(f"{where}: send_email needs a subject", field=where)
        elif step.type == "update_field" and not config.get("field"):
            raise ValidationError(f"{where}: update_field needs a field", field=where)
    return payload


def build_sequence(user_id: str, payload: SequenceCreate) -> ActivitySequence:
    """Assign ids, step order and timestamps to a validated payload."""
    steps = []
    for index, step in enumerate(payload.steps):
        order = step.order if step.order is not None else index
        steps.append(step.model_copy(update={"order": order}))
    steps.sort(key=lambda s: s.order)

    now = utcnow()
    return ActivitySequence(
        id=new_id(),
        user_id=user_id,
        name=payload.name.strip(),
        description=payload.description,
        trigger_type=payload.trigger_type,
        triggers=payload.triggers,
        steps=steps,
        is_active=payload.is_active,
        created_at=now,
        updated_at=now,
    )


def trigger_matches(
    trigger: SequenceTrigger,
    event: str,
    ctx: ExecutionContext,
    changed_fields: Iterable[str] = (),
) -> bool:
    """Check whether one trigger fires for an event in the given context."""
    if trigger.type not in EVENT_TRIGGERS.get(event, ()):
        return False

    changed = set(changed_fields)
    conditions = dict(trigger.conditions or {})

    if trigger.type == "activity_completed":
        if ctx.get("activity.status") != "completed":
            return False
        if event == "completed" and "status" not in changed:
            return False
    elif trigger.type == "field_changed":
        wanted = conditions.pop("changed_field", None)
        if not changed:
            return False
        if wanted:
            wanted = wanted if isinstance(wanted, list) else [wanted]
            if not changed.intersection(wanted):
                return False
    elif trigger.type == "stage_changed":
        if STAGE_FIELD not in changed:
            return False
        to_stage = conditions.pop("to_stage", None)
        if to_stage is not None and ctx.get("activity.custom_fields.stage") != to_stage:
            return False
    elif trigger.type == "score_threshold":
        score = ctx.get("contact.engagement_score")
        if score is None:
            return False
        min_score = conditions.pop("min_score", None)
        max_score = conditions.pop("max_score", None)
        if min_score is not None and score < min_score:
            return False
        if max_score is not None and score > max_score:
            return False

    return conditions_hold(conditions, ctx)


def find_triggered(
    sequences: Iterable[ActivitySequence],
    event: str,
    activity: Activity,
    *,
    changed_fields: Iterable[str] = (),
    contact: dict | None = None,
) -> list[tuple[ActivitySequence, SequenceTrigger]]:
    """Active event-driven sequences with a trigger matching this event.

    At most one trigger per sequence is returned (the first that matches).
    """
    changed = tuple(changed_fields)
    ctx = ExecutionContext.for_activity(activity.model_dump(mode="json"), contact)
    matched = []
    for sequence in sequences:
        if not sequence.is_active or sequence.trigger_type not in EVENT_DRIVEN:
            continue
        for trigger in sequence.triggers:
            if trigger_matches(trigger, event, ctx, changed):
                matched.append((sequence, trigger))
                break
    return matched
