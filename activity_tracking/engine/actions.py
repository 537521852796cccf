"""Step action executors - each records its effect through the tracker."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any

from ..schemas.common import utcnow
from .context import ExecutionContext

if TYPE_CHECKING:
    from ..tracker import ActivityTracker

SEQUENCE_SOURCE = "activity_sequence"

# Top-level activity fields an update_field step may patch
UPDATABLE_FIELDS = {
    "subject", "description", "outcome", "status", "priority", "subtype",
    "assigned_to", "tags", "location", "deal_id", "lead_id",
}


class StepActionError(Exception):
    """A step could not run with the configuration/context it was given."""


def _sequence_metadata(ctx: ExecutionContext) -> dict[str, Any]:
    return {
        "source": SEQUENCE_SOURCE,
        "integration_data": {
            "sequence_id": ctx.get("sequence.id"),
            "instance_id": ctx.get("sequence.instance_id"),
            "trigger_activity_id": ctx.get("activity.id"),
        },
    }


def _owner(ctx: ExecutionContext) -> str:
    return ctx.get("sequence.user_id") or ctx.get("activity.user_id") or "system"


async def execute_action(
    step_type: str, config: dict, ctx: ExecutionContext, tracker: ActivityTracker
) -> dict:
    """Dispatch to the appropriate step handler."""
    handler = ACTION_HANDLERS.get(step_type)
    if not handler:
        raise StepActionError(f"Unknown step type: {step_type}")
    return await handler(config, ctx, tracker)


async def action_create_activity(config: dict, ctx: ExecutionContext, tracker: ActivityTracker) -> dict:
    data = {
        key: config[key]
        for key in (
            "type", "subtype", "subject", "description", "outcome", "priority",
            "status", "direction", "channel", "duration", "location", "tags",
            "custom_fields", "assigned_to", "deal_id", "lead_id",
        )
        if key in config
    }
    data.setdefault("contact_id", config.get("contact_id") or ctx.get("contact.id"))
    data.setdefault("created_by", config.get("created_by") or "sequence")
    data["metadata"] = _sequence_metadata(ctx)
    if "scheduled_in_minutes" in config:
        data["scheduled_at"] = utcnow() + timedelta(minutes=float(config["scheduled_in_minutes"]))

    activity = await tracker.log_activity(_owner(ctx), data)
    return {"created": True, "activity_id": activity.id, "type": activity.type}


async def action_send_email(config: dict, ctx: ExecutionContext, tracker: ActivityTracker) -> dict:
    contact_id = config.get("contact_id") or ctx.get("contact.id")
    if not contact_id:
        raise StepActionError("send_email requires a contact")

    activity = await tracker.log_activity(_owner(ctx), {
        "type": "email",
        "subject": config.get("subject", ""),
        "description": config.get("body", ""),
        "contact_id": contact_id,
        "channel": "email",
        "direction": "outbound",
        "status": "completed",
        "outcome": "pending",
        "tags": ["sequence"],
        "created_by": config.get("created_by") or "sequence",
        "metadata": _sequence_metadata(ctx),
    })
    return {"sent": True, "type": "email", "contact_id": contact_id, "activity_id": activity.id}


async def action_create_task(config: dict, ctx: ExecutionContext, tracker: ActivityTracker) -> dict:
    due_in_days = float(config.get("due_in_days", 1))
    activity = await tracker.log_activity(_owner(ctx), {
        "type": "task",
        "subject": config.get("title") or config.get("subject") or "New Task",
        "description": config.get("description", ""),
        "contact_id": config.get("contact_id") or ctx.get("contact.id"),
        "priority": config.get("priority", "medium"),
        "status": "planned",
        "scheduled_at": utcnow() + timedelta(days=due_in_days),
        "assigned_to": config.get("assigned_to"),
        "created_by": config.get("created_by") or "sequence",
        "metadata": _sequence_metadata(ctx),
    })
    return {"created": True, "type": "task", "activity_id": activity.id}


async def action_update_field(config: dict, ctx: ExecutionContext, tracker: ActivityTracker) -> dict:
    activity_id = config.get("activity_id") or ctx.get("activity.id")
    field = config.get("field", "")
    value = config.get("value")
    if not activity_id or not field:
        raise StepActionError("update_field requires activity_id and field")

    if field.startswith("custom_fields."):
        current = await tracker.get_activity(activity_id)
        custom_fields = dict(current.custom_fields)
        custom_fields[field.split(".", 1)[1]] = value
        patch = {"custom_fields": custom_fields}
    elif field in UPDATABLE_FIELDS:
        patch = {field: value}
    else:
        raise StepActionError(f"Field {field!r} cannot be updated by a sequence")

    await tracker.update_activity(activity_id, patch)
    return {"updated": True, "activity_id": activity_id, "field": field}


# Step type → handler. wait and condition steps are handled by the runner.
ACTION_HANDLERS: dict[str, Any] = {
    "create_activity": action_create_activity,
    "send_email": action_send_email,
    "create_task": action_create_task,
    "update_field": action_update_field,
}
