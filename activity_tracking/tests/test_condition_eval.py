"""Tests for condition evaluation and trigger matching."""

from __future__ import annotations

from activity_tracking.engine.context import ExecutionContext
from activity_tracking.engine.evaluator import conditions_hold, evaluate_condition, matches_filters
from activity_tracking.schemas import SequenceTrigger
from activity_tracking.services.sequence_svc import trigger_matches


def _ctx(**activity) -> ExecutionContext:
    activity.setdefault("type", "call")
    activity.setdefault("status", "planned")
    return ExecutionContext.for_activity(activity)


def test_equals():
    ctx = _ctx(outcome="positive")
    assert evaluate_condition({"field": "activity.outcome", "operator": "equals", "value": "positive"}, ctx)
    assert not evaluate_condition({"field": "activity.outcome", "operator": "equals", "value": "negative"}, ctx)


def test_contains_on_lists_and_strings():
    ctx = _ctx(tags=["vip", "renewal"], subject="Quarterly renewal call")
    assert evaluate_condition({"field": "activity.tags", "operator": "contains", "value": "vip"}, ctx)
    assert evaluate_condition({"field": "activity.subject", "operator": "contains", "value": "renewal"}, ctx)
    assert not evaluate_condition({"field": "activity.tags", "operator": "contains", "value": "churn"}, ctx)


def test_numeric_comparisons():
    ctx = ExecutionContext({"contact": {"engagement_score": 42}})
    assert evaluate_condition({"field": "contact.engagement_score", "operator": "greater_than", "value": 40}, ctx)
    assert evaluate_condition({"field": "contact.engagement_score", "operator": "greater_or_equal", "value": 42}, ctx)
    assert not evaluate_condition({"field": "contact.engagement_score", "operator": "less_than", "value": 10}, ctx)
    assert not evaluate_condition({"field": "contact.missing", "operator": "greater_than", "value": 1}, ctx)


def test_compound_logic():
    ctx = _ctx(type="demo", outcome="negative")
    both = {
        "logic": "and",
        "conditions": [
            {"field": "activity.type", "operator": "equals", "value": "demo"},
            {"field": "activity.outcome", "operator": "equals", "value": "positive"},
        ],
    }
    assert not evaluate_condition(both, ctx)
    assert evaluate_condition({**both, "logic": "or"}, ctx)


def test_template_value_resolved():
    ctx = ExecutionContext({"activity": {"assigned_to": "rep-1", "created_by": "rep-1"}})
    cond = {"field": "activity.assigned_to", "operator": "equals", "value": "{{activity.created_by}}"}
    assert evaluate_condition(cond, ctx)


def test_filters_list_means_any_of():
    data = {"type": "demo", "custom_fields": {"stage": "won"}}
    assert matches_filters({"type": ["demo", "meeting"]}, data)
    assert matches_filters({"custom_fields.stage": "won"}, data)
    assert not matches_filters({"type": "call"}, data)


def test_conditions_hold_accepts_expression_or_filter_map():
    ctx = _ctx(type="demo")
    assert conditions_hold(None, ctx)
    assert conditions_hold({"type": "demo"}, ctx)
    assert conditions_hold({"field": "activity.type", "operator": "in", "value": ["demo", "call"]}, ctx)
    assert not conditions_hold({"type": "email"}, ctx)


def test_activity_completed_trigger_needs_completed_status():
    trigger = SequenceTrigger(type="activity_completed")
    assert not trigger_matches(trigger, "logged", _ctx(status="planned"))
    assert trigger_matches(trigger, "logged", _ctx(status="completed"))
    # On updates, only a status change counts as completion
    assert not trigger_matches(trigger, "completed", _ctx(status="completed"), ["outcome"])
    assert trigger_matches(trigger, "completed", _ctx(status="completed"), ["status"])


def test_field_changed_trigger():
    trigger = SequenceTrigger(type="field_changed", conditions={"changed_field": "outcome"})
    assert trigger_matches(trigger, "completed", _ctx(), ["outcome"])
    assert not trigger_matches(trigger, "completed", _ctx(), ["status"])
    assert not trigger_matches(trigger, "logged", _ctx(), ["outcome"])


def test_stage_changed_trigger():
    trigger = SequenceTrigger(type="stage_changed", conditions={"to_stage": "won"})
    won = _ctx(custom_fields={"stage": "won"})
    assert trigger_matches(trigger, "completed", won, ["custom_fields.stage"])
    assert not trigger_matches(trigger, "completed", won, ["outcome"])
    assert not trigger_matches(trigger, "completed", _ctx(custom_fields={"stage": "lost"}), ["custom_fields.stage"])


def test_score_threshold_trigger():
    trigger = SequenceTrigger(type="score_threshold", conditions={"min_score": 20, "max_score": 50})
    scored = ExecutionContext.for_activity({"type": "call"}, {"id": "c1", "engagement_score": 24})
    assert trigger_matches(trigger, "score", scored)
    low = ExecutionContext.for_activity({"type": "call"}, {"id": "c1", "engagement_score": 12})
    assert not trigger_matches(trigger, "score", low)
    unscored = ExecutionContext.for_activity({"type": "call"}, {"id": "c1"})
    assert not trigger_matches(trigger, "score", unscored)


def test_resolve_config_recurses_and_keeps_unknowns():
    ctx = ExecutionContext.for_activity({"subject": "Demo", "contact_id": "c1"})
    config = {
        "subject": "Re: {{activity.subject}}",
        "custom_fields": {"source": "{{contact.id}}"},
        "tags": ["{{activity.subject}}", {"note": "{{missing.value}}"}],
        "due_in_days": 2,
    }
    assert ctx.resolve_config(config) == {
        "subject": "Re: Demo",
        "custom_fields": {"source": "c1"},
        "tags": ["Demo", {"note": "{{missing.value}}"}],
        "due_in_days": 2,
    }
