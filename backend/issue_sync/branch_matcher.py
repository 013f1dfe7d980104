# issue_sync/branch_matcher.py — Find the task a branch or pull request refers to
#
# Branch names follow the integration's pattern (default "{slug}-{number}");
# a custom regex in Integration.config replaces the pattern entirely, its first
# group being the task number. Pull requests fall back to their title and body.
import logging
import re
from typing import Optional, Dict, Any

logger = logging.getLogger("boardsync.branch-matcher")

DEFAULT_BRANCH_PATTERN = "{slug}-{number}"

_PLACEHOLDER = re.compile(r"(\{slug\}|\{number\}|\{title\})")

_TITLE_PATTERNS = [
    re.compile(r"\[(\d+)\]"),
    re.compile(r"#(\d+)"),
    re.compile(r"\((\d+)\)"),
    re.compile(r"^(\d+)[:\-\s]"),
    re.compile(r"task[:\-\s]*(\d+)", re.IGNORECASE),
]

_BODY_PATTERNS = [
    re.compile(r"task[:\-\s#]*(\d+)", re.IGNORECASE),
    re.compile(r"closes[:\-\s#]*(\d+)", re.IGNORECASE),
    re.compile(r"fixes[:\-\s#]*(\d+)", re.IGNORECASE),
    re.compile(r"resolves[:\-\s#]*(\d+)", re.IGNORECASE),
]


def branch_regex(pattern: str, project_slug: str) -> re.Pattern:
    parts = []
    for piece in _PLACEHOLDER.split(pattern):
        if piece == "{slug}":
            parts.append(re.escape(project_slug.lower()))
        elif piece == "{number}":
            parts.append(r"(\d+)")
        elif piece == "{title}":
            parts.append(r"(?:[a-z0-9-]+)")
        else:
            parts.append(re.escape(piece))
    return re.compile(f"^{''.join(parts)}$", re.IGNORECASE)


def _first_number(regex: re.Pattern, text: str) -> Optional[int]:
    match = regex.search(text)
    if match and match.group(1) and match.group(1).isdigit():
        return int(match.group(1))
    return None


def task_number_from_branch(branch: str, config: Dict[str, Any], project_slug: str) -> Optional[int]:
    custom = (config or {}).get("customBranchRegex")
    if custom:
        try:
            regex = re.compile(custom, re.IGNORECASE)
        except re.error:
            logger.error(f"Invalid custom branch regex: {custom!r}")
            return None
        try:
            return _first_number(regex, branch)
        except IndexError:
            logger.error(f"Custom branch regex {custom!r} has no capture group")
            return None

    pattern = (config or {}).get("branchPattern") or DEFAULT_BRANCH_PATTERN
    return _first_number(branch_regex(pattern, project_slug), branch)


def task_number_from_pr_title(title: str) -> Optional[int]:
    for regex in _TITLE_PATTERNS:
        number = _first_number(regex, title)
        if number:
            return number
    return None


def task_number_from_pr_body(body: str) -> Optional[int]:
    for regex in _BODY_PATTERNS:
        number = _first_number(regex, body)
        if number:
            return number
    return None


def extract_task_number(
    branch: str,
    pr_title: Optional[str],
    pr_body: Optional[str],
    config: Dict[str, Any],
    project_slug: str,
) -> Optional[int]:
    """Task number from the branch name, then the PR title, then the PR body"""
    number = task_number_from_branch(branch, config, project_slug)
    if number:
        return number
    if pr_title:
        number = task_number_from_pr_title(pr_title)
        if number:
            return number
    if pr_body:
        return task_number_from_pr_body(pr_body)
    return None
