# issue_sync/loop_guard.py — Detects events that echo our own outbound writes
#
# Detection is heuristic: an issue is ours if its body embeds a task-id marker
# or its title carries the internal prefix. Swapping the strategy (e.g. for a
# ledger of outbound causal ids) only touches this module.
from typing import Optional

from issue_sync import config
from issue_sync.metadata import parse_task_id


def is_self_authored_issue(title: Optional[str], body: Optional[str]) -> bool:
    if parse_task_id(body):
        return True
    return bool(title) and config.TITLE_PREFIX in title


def is_webhook_sourced(source: Optional[str]) -> bool:
    """True when a task mutation was applied by an inbound webhook"""
    return source == config.WEBHOOK_SOURCE
