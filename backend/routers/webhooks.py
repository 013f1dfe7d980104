# routers/webhooks.py — Inbound issue, pull request and push webhooks from Gitea and GitHub
#
# Unauthenticated at the HTTP layer; every delivery is authenticated by the
# HMAC signature of the integration it resolves to.
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from issue_sync.dispatcher import WebhookProcessor, EVENT_HEADERS
from issue_sync.handlers import IssueHandlers
from issue_sync.repositories import SyncStore
from issue_sync.runtime import SyncRuntime, get_sync_runtime
from task_service import TaskService

router = APIRouter(prefix="/api/v1/webhooks", tags=["Webhooks"])


@router.post("/{integration_type}")
async def receive_webhook(
    integration_type: str,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    runtime: SyncRuntime = Depends(get_sync_runtime),
):
    """Apply one issue, pull request or push event; always answers with {success, message?, error?}"""
    raw_body = await request.body()
    event_header, signature_header = EVENT_HEADERS.get(integration_type, (None, None))
    event_type = request.headers.get(event_header) if event_header else None
    signature = request.headers.get(signature_header) if signature_header else None

    store = SyncStore.for_session(db)
    handlers = IssueHandlers(store, TaskService(db, runtime.events))
    result = await WebhookProcessor(store, handlers).process(integration_type, event_type, raw_body, signature)

    if not result.success:
        await db.rollback()
    return JSONResponse(status_code=result.status_code, content=result.to_dict())
