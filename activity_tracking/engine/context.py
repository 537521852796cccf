"""Execution context - variable passing between sequence steps."""

from __future__ import annotations

import re
from typing import Any


class ExecutionContext:
    """Holds runtime state for one sequence instance.

    Variables come from the triggering activity (``activity.*``), the
    contact (``contact.*``) and step outputs (``steps.<step_id>.*``), and
    are substituted into step configuration with ``{{variable}}`` syntax.
    The whole context is JSON-serializable so it can be persisted between
    steps.
    """

    def __init__(self, data: dict | None = None):
        self._data: dict[str, Any] = dict(data or {})

    @classmethod
    def for_activity(cls, activity: dict | None, contact: dict | None = None) -> ExecutionContext:
        data: dict[str, Any] = {}
        if activity:
            data["activity"] = activity
        if contact:
            data["contact"] = contact
        elif activity and activity.get("contact_id"):
            data["contact"] = {"id": activity["contact_id"]}
        return cls(data)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Get value by dotted key path (e.g. 'activity.custom_fields.stage')."""
        current: Any = self._data
        for part in key.split("."):
            if isinstance(current, dict):
                current = current.get(part)
            else:
                return default
            if current is None:
                return default
        return current

    def set_step_output(self, step_id: str, output: dict) -> None:
        steps = self._data.setdefault("steps", {})
        steps[step_id] = output

    def resolve_template(self, text: str) -> str:
        """Replace {{variable}} placeholders with context values."""
        def replacer(match):
            value = self.get(match.group(1).strip())
            return str(value) if value is not None else match.group(0)

        return re.sub(r"\{\{(.+?)\}\}", replacer, text)

    def resolve_value(self, value: Any) -> Any:
        """Resolve templates in strings, recursing through dicts and lists."""
        if isinstance(value, str):
            return self.resolve_template(value)
        if isinstance(value, dict):
            return {key: self.resolve_value(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self.resolve_value(item) for item in value]
        return value

    def resolve_config(self, config: dict) -> dict:
        return self.resolve_value(config)

    def to_dict(self) -> dict:
        return dict(self._data)
