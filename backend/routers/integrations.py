# routers/integrations.py — Repository integrations (project ↔ Gitea/GitHub repository)
import os
import secrets
import logging
from typing import Optional, List, Dict, Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, require_min_role, CurrentUser
from database import get_db_session
from models import Integration, IntegrationType, UserRole, utcnow, new_uuid
from routers.projects import load_project

logger = logging.getLogger("boardsync.integrations")

router = APIRouter(prefix="/api/v1/integrations", tags=["Integrations"])

PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")


# --- Schemas ---

class IntegrationCreate(BaseModel):
    project_id: str
    type: IntegrationType = IntegrationType.GITEA
    base_url: str = Field(..., min_length=1)
    repository_owner: str = Field(..., min_length=1, max_length=200)
    repository_name: str = Field(..., min_length=1, max_length=200)
    webhook_secret: Optional[str] = None
    access_token: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)


class IntegrationUpdate(BaseModel):
    base_url: Optional[str] = None
    repository_owner: Optional[str] = None
    repository_name: Optional[str] = None
    access_token: Optional[str] = None
    config: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None


class IntegrationOut(BaseModel):
    id: str
    project_id: str
    type: str
    base_url: str
    repository_owner: str
    repository_name: str
    full_name: str
    webhook_url: str
    has_secret: bool
    has_access_token: bool
    config: dict
    is_active: bool
    created_at: Optional[str] = None
    # Only populated on create and rotate-secret
    webhook_secret: Optional[str] = None


def webhook_url_for(integration_type: str) -> str:
    return f"{PUBLIC_BASE_URL}/api/v1/webhooks/{integration_type}"


def _integration_to_out(i: Integration, reveal_secret: bool = False) -> dict:
    return {
        "id": i.id,
        "project_id": i.project_id,
        "type": i.type.value,
        "base_url": i.base_url,
        "repository_owner": i.repository_owner,
        "repository_name": i.repository_name,
        "full_name": f"{i.repository_owner}/{i.repository_name}",
        "webhook_url": webhook_url_for(i.type.value),
        "has_secret": bool(i.webhook_secret),
        "has_access_token": bool(i.access_token),
        "config": i.config or {},
        "is_active": bool(i.is_active),
        "created_at": i.created_at.isoformat() if i.created_at else None,
        "webhook_secret": i.webhook_secret if reveal_secret else None,
    }


async def _load_integration(integration_id: str, user: CurrentUser, db: AsyncSession) -> Integration:
    integration = await db.get(Integration, integration_id)
    if not integration:
        raise HTTPException(404, "Integration not found")
    await load_project(integration.project_id, user, db)
    return integration


async def _active_for_project(db: AsyncSession, project_id: str, integration_type: IntegrationType, exclude_id=None):
    stmt = select(Integration).where(
        Integration.project_id == project_id,
        Integration.type == integration_type,
        Integration.is_active.is_(True),
    )
    if exclude_id:
        stmt = stmt.where(Integration.id != exclude_id)
    return (await db.execute(stmt)).scalars().first()


# --- Endpoints ---

@router.get("", response_model=List[IntegrationOut])
async def list_integrations(
    project_id: str = Query(...),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await load_project(project_id, user, db)
    result = await db.execute(
        select(Integration).where(Integration.project_id == project_id).order_by(Integration.created_at)
    )
    return [_integration_to_out(i) for i in result.scalars().all()]


@router.post("", response_model=IntegrationOut, status_code=201)
async def create_integration(
    data: IntegrationCreate,
    user: CurrentUser = Depends(require_min_role(UserRole.ORG_ADMIN)),
    db: AsyncSession = Depends(get_db_session),
):
    """Bind a project to a repository; a webhook secret is generated when none is given"""
    await load_project(data.project_id, user, db)
    if await _active_for_project(db, data.project_id, data.type):
        raise HTTPException(409, f"Project already has an active {data.type.value} integration")

    integration = Integration(
        id=new_uuid(),
        project_id=data.project_id,
        type=data.type,
        base_url=data.base_url.rstrip("/"),
        repository_owner=data.repository_owner.strip(),
        repository_name=data.repository_name.strip(),
        webhook_secret=data.webhook_secret or secrets.token_hex(32),
        access_token=data.access_token,
        config=data.config,
        is_active=True,
        created_by=user.id,
    )
    db.add(integration)
    await db.commit()
    await db.refresh(integration)
    logger.info(f"Integration {integration.id} created for {integration.repository_owner}/{integration.repository_name}")
    return _integration_to_out(integration, reveal_secret=True)


@router.get("/{integration_id}", response_model=IntegrationOut)
async def get_integration(
    integration_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return _integration_to_out(await _load_integration(integration_id, user, db))


@router.patch("/{integration_id}", response_model=IntegrationOut)
async def update_integration(
    integration_id: str,
    data: IntegrationUpdate,
    user: CurrentUser = Depends(require_min_role(UserRole.ORG_ADMIN)),
    db: AsyncSession = Depends(get_db_session),
):
    integration = await _load_integration(integration_id, user, db)
    update_data = data.model_dump(exclude_unset=True)

    if update_data.get("is_active") and not integration.is_active:
        if await _active_for_project(db, integration.project_id, integration.type, exclude_id=integration.id):
            raise HTTPException(409, f"Project already has an active {integration.type.value} integration")

    for key, value in update_data.items():
        if isinstance(value, str):
            value = value.strip()
        setattr(integration, key, value)
    integration.updated_at = utcnow()
    await db.commit()
    await db.refresh(integration)
    return _integration_to_out(integration)


@router.delete("/{integration_id}")
async def deactivate_integration(
    integration_id: str,
    user: CurrentUser = Depends(require_min_role(UserRole.ORG_ADMIN)),
    db: AsyncSession = Depends(get_db_session),
):
    """Deactivate; links and rules stay so the binding can be re-enabled"""
    integration = await _load_integration(integration_id, user, db)
    integration.is_active = False
    integration.updated_at = utcnow()
    await db.commit()
    logger.info(f"Integration {integration.id} deactivated")
    return {"status": "deactivated", "id": integration.id}


@router.post("/{integration_id}/rotate-secret", response_model=IntegrationOut)
async def rotate_webhook_secret(
    integration_id: str,
    user: CurrentUser = Depends(require_min_role(UserRole.ORG_ADMIN)),
    db: AsyncSession = Depends(get_db_session),
):
    integration = await _load_integration(integration_id, user, db)
    integration.webhook_secret = secrets.token_hex(32)
    integration.updated_at = utcnow()
    await db.commit()
    await db.refresh(integration)
    logger.info(f"Webhook secret rotated for integration {integration.id}")
    return _integration_to_out(integration, reveal_secret=True)
