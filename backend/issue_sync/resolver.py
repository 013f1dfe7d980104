# issue_sync/resolver.py — Repository identity → active Integration
import logging
from typing import Optional, Tuple

from issue_sync.errors import ValidationFailure
from issue_sync.repositories import IntegrationRepository
from models import Integration

logger = logging.getLogger("boardsync.resolver")


def split_repository(full_name: str) -> Tuple[str, str]:
    """Split "owner/name" into its parts; anything else is a malformed identity"""
    parts = (full_name or "").split("/")
    if len(parts) != 2 or not all(p.strip() for p in parts):
        raise ValidationFailure(f"Invalid repository full name: {full_name!r}")
    return parts[0].strip(), parts[1].strip()


async def resolve_integration(
    integrations: IntegrationRepository,
    full_name: str,
    integration_type: str,
) -> Optional[Integration]:
    """Active integration bound to the repository, or None when nobody tracks it.

    Owner and name compare case-insensitively; when several active integrations
    match, the oldest wins.
    """
    owner, name = split_repository(full_name)
    integration = await integrations.find_active_by_repository(owner, name, integration_type)
    if not integration:
        logger.info(f"No active {integration_type} integration for {owner}/{name}")
    return integration
