"""
Defensive normalisation of study plans returned by the completion service.

The model output is not schema-enforced, so anything may be missing or of the
wrong type. `sanitize_plan` never raises; at worst it returns `{"modules": []}`.
"""
from __future__ import annotations

from typing import Any

DEFAULT_TOPIC = "Untitled Topic"
DEFAULT_TASK_DESCRIPTION = "No description"
DEFAULT_RESOURCE_URL = "#"


def _clean_str(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    return ""


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _sanitize_resource(raw: Any) -> dict[str, str] | None:
    if not isinstance(raw, dict):
        return None
    title = _clean_str(raw.get("title"))
    if not title:
        return None
    return {"title": title, "url": _clean_str(raw.get("url")) or DEFAULT_RESOURCE_URL}


def _sanitize_task(raw: Any) -> dict[str, Any]:
    raw = raw if isinstance(raw, dict) else {}
    resources = [_sanitize_resource(r) for r in _as_list(raw.get("resources"))]
    return {
        "description": _clean_str(raw.get("description")) or DEFAULT_TASK_DESCRIPTION,
        "resources": [r for r in resources if r is not None],
    }


def _sanitize_module(raw: Any) -> dict[str, Any]:
    raw = raw if isinstance(raw, dict) else {}
    return {
        "topic": _clean_str(raw.get("topic")) or DEFAULT_TOPIC,
        "tasks": [_sanitize_task(t) for t in _as_list(raw.get("tasks"))],
    }


def sanitize_plan(raw_plan: Any) -> dict[str, Any]:
    """
    Return a canonical plan: every module has a topic string and a task list,
    every task a description and a resource list, every resource a non-empty
    title and a url. Other top-level keys (e.g. `title`) are carried through.
    """
    if not isinstance(raw_plan, dict):
        return {"modules": []}

    return {
        **raw_plan,
        "modules": [_sanitize_module(m) for m in _as_list(raw_plan.get("modules"))],
    }


def plan_title(plan: dict[str, Any], default: str = "Syllabus Study Plan") -> str:
    title = _clean_str(plan.get("title"))
    return title[:200] if title else default
