# issue_sync/label_sync.py — Best-effort push of task labels to the linked external issue
#
# Chain: task → issue link → active integration with credentials → tracker.
# A broken chain is a logged skip. Each network step fails independently and
# nothing here ever raises to the caller.
import logging
import re
from typing import Optional, Tuple

from database import get_db_context
from issue_sync.repositories import SqlEntityLinkRepository, SqlIntegrationRepository
from issue_sync.tracker_client import TrackerClient
from models import ResourceType

logger = logging.getLogger("boardsync.label-sync")

NAMED_COLORS = {
    "red": "ef4444",
    "orange": "f97316",
    "amber": "f59e0b",
    "yellow": "eab308",
    "lime": "84cc16",
    "green": "22c55e",
    "emerald": "10b981",
    "teal": "14b8a6",
    "cyan": "06b6d4",
    "sky": "0ea5e9",
    "blue": "3b82f6",
    "indigo": "6366f1",
    "violet": "8b5cf6",
    "purple": "a855f7",
    "fuchsia": "d946ef",
    "pink": "ec4899",
    "rose": "f43f5e",
    "gray": "6b7280",
    "slate": "64748b",
    "zinc": "71717a",
    "neutral": "737373",
    "stone": "78716c",
}

NEUTRAL_COLOR = NAMED_COLORS["gray"]

_HEX6 = re.compile(r"^[0-9a-f]{6}$")
_HEX3 = re.compile(r"^[0-9a-f]{3}$")


def to_hex_color(color: Optional[str]) -> str:
    """Named token → table value; 6-hex → as is; 3-hex → expanded; anything else → neutral"""
    value = (color or "").strip().lower().lstrip("#")
    if value in NAMED_COLORS:
        return NAMED_COLORS[value]
    if _HEX6.match(value):
        return value
    if _HEX3.match(value):
        return "".join(c * 2 for c in value)
    return NEUTRAL_COLOR


class LabelSyncService:
    def __init__(self, session_factory=None, transport=None):
        self.session_factory = session_factory
        self.transport = transport

    async def _issue_context(self, task_id: str) -> Optional[Tuple[TrackerClient, int]]:
        async with get_db_context(self.session_factory) as db:
            link = await SqlEntityLinkRepository(db).find_for_task(task_id, ResourceType.ISSUE.value)
            if not link:
                logger.info(f"Task {task_id} has no linked issue, skipping label sync")
                return None
            if not link.integration_id:
                logger.info(f"Issue link {link.id} has no integration, skipping label sync")
                return None

            integration = await SqlIntegrationRepository(db).get(link.integration_id)
            if not integration or not integration.is_active:
                logger.info(f"Integration for task {task_id} is missing or inactive, skipping label sync")
                return None
            if not integration.access_token:
                logger.info(f"Integration {integration.id} has no credentials, skipping label sync")
                return None

            try:
                issue_number = int(link.external_id)
            except (TypeError, ValueError):
                logger.warning(f"Issue link {link.id} has non-numeric external id {link.external_id!r}")
                return None

            return TrackerClient.for_integration(integration, transport=self.transport), issue_number

    async def sync_label(self, task_id: str, name: str, color: Optional[str]) -> bool:
        """Ensure the label exists on the tracker and attach it to the linked issue"""
        try:
            ctx = await self._issue_context(task_id)
        except Exception:
            logger.error(f"Could not resolve issue for task {task_id}", exc_info=True)
            return False
        if not ctx:
            return False
        client, issue_number = ctx

        label = None
        try:
            label = await client.get_label(name)
        except Exception as e:
            logger.warning(f"Failed to look up label '{name}': {e}")

        if label is None:
            try:
                await client.create_label(name, to_hex_color(color))
                logger.info(f"Created label '{name}' in {client.owner}/{client.repo}")
            except Exception as e:
                logger.error(f"Failed to create label '{name}' in {client.owner}/{client.repo}: {e}")
                return False

        try:
            await client.add_labels(issue_number, [name])
        except Exception as e:
            logger.error(f"Failed to add label '{name}' to issue #{issue_number}: {e}")
            return False

        logger.info(f"Synced label '{name}' to issue #{issue_number}")
        return True

    async def remove_label(self, task_id: str, name: str) -> bool:
        try:
            ctx = await self._issue_context(task_id)
        except Exception:
            logger.error(f"Could not resolve issue for task {task_id}", exc_info=True)
            return False
        if not ctx:
            return False
        client, issue_number = ctx

        try:
            await client.remove_label(issue_number, name)
        except Exception as e:
            logger.error(f"Failed to remove label '{name}' from issue #{issue_number}: {e}")
            return False

        logger.info(f"Removed label '{name}' from issue #{issue_number}")
        return True
