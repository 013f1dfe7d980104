# issue_sync/metadata.py — Task metadata embedded in external issue bodies
#
# Outbound issues carry an invisible HTML comment naming the task they mirror.
# Inbound bodies have every marker format stripped before they reach a task.
import re
from datetime import datetime, timezone
from typing import Optional

METADATA_TAG = "BOARDSYNC_METADATA"

STATUS_DISPLAY_NAMES = {
    "to-do": "To Do",
    "in-progress": "In Progress",
    "in-review": "In Review",
    "done": "Done",
}

_METADATA_BLOCK = re.compile(rf"<!-- {METADATA_TAG}[\s\S]*?{METADATA_TAG} -->")
_METADATA_TASK_ID = re.compile(rf"<!-- {METADATA_TAG}[\s\S]*?Task ID:\s*([^\n\r]+)[\s\S]*?{METADATA_TAG} -->")
_LEGACY_TASK_ID = re.compile(r"Task id on boardsync:\s*([^\n\r]+)")

_LEGACY_PATTERNS = [
    # Visible footer written by early releases
    re.compile(
        r"---\s*Task id on boardsync: [^\n]+\s*Status: [^\n]+\s*Priority: [^\n]+\s*"
        r"Assignee: [^\n]+\s*(Created|Updated) at: [^\n]+\s*$"
    ),
    re.compile(r"---\s*\*\*Task Status:\*\* [^\n]+"),
    re.compile(r"\*\*Task Status:\*\* [^\n]+"),
    re.compile(r"\*Linked to issue: [^*]+\*"),
    re.compile(r"\*Created from issue: [^*]+\*"),
]


def status_display_name(status: str) -> str:
    return STATUS_DISPLAY_NAMES.get(status, status)


def render_issue_body(
    task_id: str,
    description: Optional[str],
    status: str,
    priority: Optional[str] = None,
    action: str = "created",
) -> str:
    """Issue body for a task mirrored outbound: description plus hidden metadata"""
    timestamp = datetime.now(timezone.utc).isoformat()
    lines = [
        f"<!-- {METADATA_TAG}",
        f"Task ID: {task_id}",
        f"Status: {status_display_name(status)}",
        f"Priority: {priority or 'none'}",
        f"{action.capitalize()} at: {timestamp}",
        f"{METADATA_TAG} -->",
    ]
    text = (description or "").strip()
    return f"{text}\n\n" + "\n".join(lines) if text else "\n".join(lines)


def parse_task_id(body: Optional[str]) -> Optional[str]:
    """Task id embedded in an issue body, if any"""
    if not body:
        return None
    match = _METADATA_TASK_ID.search(body) or _LEGACY_TASK_ID.search(body)
    if not match:
        return None
    return match.group(1).strip() or None


def strip_metadata(body: Optional[str]) -> str:
    """Remove every metadata marker format from an issue body"""
    if not body:
        return ""
    cleaned = _METADATA_BLOCK.sub("", body)
    for pattern in _LEGACY_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    return cleaned.strip()
