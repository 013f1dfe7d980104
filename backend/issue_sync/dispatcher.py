# issue_sync/dispatcher.py — Webhook entry point: classify, authenticate, route
#
# Order of work for one delivery:
#   event header → payload validation → action classification →
#   repository resolution → signature check → handler
# The secret lives on the Integration, so the repository has to be resolved
# before the signature can be checked. Nothing is written before the check.
import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any, Tuple

from issue_sync.errors import SyncError, AuthenticationFailure, ValidationFailure, NotFound
from issue_sync.code_handlers import CodeHandlers
from issue_sync.events import (
    IssueOpened, IssueStateChanged, IssueEdited, IssueDeleted,
    PullRequestOpened, PullRequestClosed, BranchPushed, SyncOutcome,
    parse_issue_payload, to_issue_event,
    parse_pull_request_payload, to_pull_request_event,
    parse_push_payload, to_push_event,
)
from issue_sync.handlers import IssueHandlers
from issue_sync.repositories import SyncStore
from issue_sync.resolver import resolve_integration
from issue_sync.signature import verify_signature
from telemetry import start_span

logger = logging.getLogger("boardsync.webhooks")

ISSUES_EVENT = "issues"
PULL_REQUEST_EVENT = "pull_request"
PUSH_EVENT = "push"

# (event-type header, signature header) per tracker flavour
EVENT_HEADERS: Dict[str, Tuple[str, str]] = {
    "gitea": ("X-Gitea-Event", "X-Gitea-Signature"),
    "github": ("X-GitHub-Event", "X-Hub-Signature-256"),
}


@dataclass
class WebhookResult:
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    status_code: int = 200
    task_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": self.success}
        if self.message:
            body["message"] = self.message
        if self.error:
            body["error"] = self.error
        return body

    @classmethod
    def ok(cls, message: str, task_id: str = None) -> "WebhookResult":
        return cls(success=True, message=message, task_id=task_id)

    @classmethod
    def failed(cls, error: str, status_code: int) -> "WebhookResult":
        return cls(success=False, error=error, status_code=status_code)


class WebhookProcessor:
    def __init__(self, store: SyncStore, handlers: IssueHandlers, code_handlers: CodeHandlers = None):
        self.store = store
        self.handlers = handlers
        self.code_handlers = code_handlers or CodeHandlers(store, handlers.tasks, handlers.mapper)

    async def process(
        self,
        integration_type: str,
        event_type: Optional[str],
        raw_body: bytes,
        signature: Optional[str],
    ) -> WebhookResult:
        """Handle one delivery; never raises, always yields a definitive result"""
        with start_span("webhook.process", integration_type=integration_type, event_type=event_type):
            try:
                return await self._process(integration_type, event_type, raw_body, signature)
            except AuthenticationFailure as e:
                logger.warning(f"Rejected {integration_type} webhook: {e.message}")
                return WebhookResult.failed(e.message, e.status_code)
            except ValidationFailure as e:
                logger.warning(f"Invalid {integration_type} webhook: {e.message}")
                return WebhookResult.failed(e.message, e.status_code)
            except NotFound as e:
                logger.info(f"Target vanished while processing webhook: {e.message}")
                return WebhookResult.ok(e.message)
            except SyncError as e:
                logger.error(f"Webhook processing failed: {e.message}")
                return WebhookResult.failed(e.message, 500)
            except Exception as e:
                logger.exception(f"Unexpected error processing {integration_type} webhook")
                return WebhookResult.failed(f"Internal error: {type(e).__name__}", 500)

    async def _process(self, integration_type, event_type, raw_body, signature) -> WebhookResult:
        if integration_type not in EVENT_HEADERS:
            raise ValidationFailure(f"Unsupported integration type: {integration_type}")

        if event_type == ISSUES_EVENT:
            payload = parse_issue_payload(raw_body)
            event = to_issue_event(payload)
            ignored = f"Issue action '{payload.action}' ignored"
        elif event_type == PULL_REQUEST_EVENT:
            payload = parse_pull_request_payload(raw_body)
            event = to_pull_request_event(payload)
            ignored = f"Pull request action '{payload.action}' ignored"
        elif event_type == PUSH_EVENT:
            payload = parse_push_payload(raw_body)
            event = to_push_event(payload)
            ignored = f"Push to '{payload.ref}' ignored"
        else:
            logger.info(f"Ignoring {integration_type} event type: {event_type}")
            return WebhookResult.ok(f"Event type '{event_type}' ignored")

        if event is None:
            logger.info(f"{ignored} ({integration_type})")
            return WebhookResult.ok(ignored)

        integration = await resolve_integration(
            self.store.integrations, payload.repository.full_name, integration_type,
        )
        if not integration:
            return WebhookResult.ok(f"No integration configured for {payload.repository.full_name}")

        verify_signature(raw_body, signature, integration.webhook_secret)

        outcome = await self.route(event, integration)
        return WebhookResult.ok(outcome.message, outcome.task_id)

    async def route(self, event, integration) -> SyncOutcome:
        if isinstance(event, PullRequestOpened):
            return await self.code_handlers.handle_pull_request_opened(event, integration)
        if isinstance(event, PullRequestClosed):
            return await self.code_handlers.handle_pull_request_closed(event, integration)
        if isinstance(event, BranchPushed):
            return await self.code_handlers.handle_push(event, integration)
        if isinstance(event, IssueOpened):
            return await self.handlers.handle_opened(event, integration)
        if isinstance(event, IssueStateChanged):
            return await self.handlers.handle_state_changed(event, integration)
        if isinstance(event, IssueEdited):
            return await self.handlers.handle_edited(event, integration)
        if isinstance(event, IssueDeleted):
            return await self.handlers.handle_deleted(event, integration)
        return SyncOutcome.ignored(f"Issue action '{event.action.value}' ignored")
