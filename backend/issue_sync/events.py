# issue_sync/events.py — Inbound webhook payloads and the typed events built from them
#
# Payloads are validated once at the boundary; handlers only ever see the
# typed events below (issues, pull requests, branch pushes).
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Type, Any

from pydantic import BaseModel, ValidationError

from issue_sync.errors import ValidationFailure

BRANCH_REF_PREFIX = "refs/heads/"


# ============================================================
# RAW PAYLOAD SCHEMAS
# ============================================================

class IssueUser(BaseModel):
    login: str
    email: Optional[str] = None


class IssuePayload(BaseModel):
    id: int
    number: int
    title: Optional[str] = ""
    body: Optional[str] = ""
    state: str
    html_url: str
    user: Optional[IssueUser] = None


class RepositoryOwner(BaseModel):
    login: str


class RepositoryPayload(BaseModel):
    name: str
    full_name: str
    owner: RepositoryOwner
    html_url: Optional[str] = None


class IssueWebhookPayload(BaseModel):
    action: str
    issue: IssuePayload
    repository: RepositoryPayload


class PullRequestHead(BaseModel):
    ref: str


class PullRequestPayload(BaseModel):
    number: int
    title: Optional[str] = ""
    body: Optional[str] = ""
    html_url: str
    state: str
    draft: bool = False
    merged: bool = False
    merged_at: Optional[str] = None
    head: PullRequestHead
    user: Optional[IssueUser] = None


class PullRequestWebhookPayload(BaseModel):
    action: str
    pull_request: PullRequestPayload
    repository: RepositoryPayload


class CommitAuthor(BaseModel):
    name: Optional[str] = None


class CommitPayload(BaseModel):
    id: str
    message: Optional[str] = ""
    timestamp: Optional[str] = None
    author: Optional[CommitAuthor] = None


class PushWebhookPayload(BaseModel):
    ref: str
    deleted: bool = False
    head_commit: Optional[CommitPayload] = None
    repository: RepositoryPayload


def _parse(model: Type[BaseModel], raw_body: bytes, kind: str):
    try:
        return model.model_validate_json(raw_body)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors()[:5])
        raise ValidationFailure(f"Malformed {kind} payload: {fields or 'invalid JSON'}")


def parse_issue_payload(raw_body: bytes) -> IssueWebhookPayload:
    return _parse(IssueWebhookPayload, raw_body, "issue")


def parse_pull_request_payload(raw_body: bytes) -> PullRequestWebhookPayload:
    return _parse(PullRequestWebhookPayload, raw_body, "pull request")


def parse_push_payload(raw_body: bytes) -> PushWebhookPayload:
    return _parse(PushWebhookPayload, raw_body, "push")


# ============================================================
# TYPED EVENTS
# ============================================================

class IssueAction(str, Enum):
    OPENED = "opened"
    CLOSED = "closed"
    REOPENED = "reopened"
    EDITED = "edited"
    DELETED = "deleted"


@dataclass(frozen=True)
class IssueEvent:
    action: IssueAction
    number: int
    title: str
    body: str
    state: str
    url: str
    repository: str
    author: Optional[str] = None

    @property
    def external_id(self) -> str:
        return str(self.number)


class IssueOpened(IssueEvent):
    pass


class IssueStateChanged(IssueEvent):
    pass


class IssueEdited(IssueEvent):
    pass


class IssueDeleted(IssueEvent):
    pass


EVENT_VARIANTS: Dict[IssueAction, Type[IssueEvent]] = {
    IssueAction.OPENED: IssueOpened,
    IssueAction.CLOSED: IssueStateChanged,
    IssueAction.REOPENED: IssueStateChanged,
    IssueAction.EDITED: IssueEdited,
    IssueAction.DELETED: IssueDeleted,
}


def to_issue_event(payload: IssueWebhookPayload) -> Optional[IssueEvent]:
    """Typed event for a payload, or None when the action is not synchronised"""
    try:
        action = IssueAction(payload.action)
    except ValueError:
        return None

    issue = payload.issue
    return EVENT_VARIANTS[action](
        action=action,
        number=issue.number,
        title=issue.title or "",
        body=issue.body or "",
        state=issue.state,
        url=issue.html_url,
        repository=payload.repository.full_name,
        author=issue.user.login if issue.user else None,
    )


@dataclass(frozen=True)
class PullRequestEvent:
    action: str
    number: int
    title: str
    body: str
    url: str
    branch: str
    state: str
    repository: str
    draft: bool = False
    merged: bool = False
    merged_at: Optional[str] = None
    author: Optional[str] = None

    @property
    def external_id(self) -> str:
        return str(self.number)


class PullRequestOpened(PullRequestEvent):
    pass


class PullRequestClosed(PullRequestEvent):
    pass


PULL_REQUEST_VARIANTS: Dict[str, Type[PullRequestEvent]] = {
    "opened": PullRequestOpened,
    "reopened": PullRequestOpened,
    "closed": PullRequestClosed,
}


def to_pull_request_event(payload: PullRequestWebhookPayload) -> Optional[PullRequestEvent]:
    """Typed event, or None for actions (synchronize, labeled, ...) that move nothing"""
    variant = PULL_REQUEST_VARIANTS.get(payload.action)
    if variant is None:
        return None

    pr = payload.pull_request
    return variant(
        action=payload.action,
        number=pr.number,
        title=pr.title or "",
        body=pr.body or "",
        url=pr.html_url,
        branch=pr.head.ref,
        state=pr.state,
        repository=payload.repository.full_name,
        draft=pr.draft,
        merged=pr.merged,
        merged_at=pr.merged_at,
        author=pr.user.login if pr.user else None,
    )


@dataclass(frozen=True)
class BranchPushed:
    branch: str
    repository: str
    repository_url: str
    head_commit: Optional[Dict[str, Any]] = None

    @property
    def url(self) -> str:
        return f"{self.repository_url}/tree/{self.branch}"


def to_push_event(payload: PushWebhookPayload) -> Optional[BranchPushed]:
    """Typed event for a push to a branch; tag pushes and branch deletions yield None"""
    if payload.deleted or not payload.ref.startswith(BRANCH_REF_PREFIX):
        return None

    repo = payload.repository
    commit = payload.head_commit
    return BranchPushed(
        branch=payload.ref[len(BRANCH_REF_PREFIX):],
        repository=repo.full_name,
        repository_url=(repo.html_url or "").rstrip("/"),
        head_commit={
            "sha": commit.id,
            "message": commit.message,
            "author": commit.author.name if commit.author else None,
            "timestamp": commit.timestamp,
        } if commit else None,
    )


# ============================================================
# OUTCOMES
# ============================================================

class OutcomeStatus(str, Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"   # no linked task, already processed, self-authored
    IGNORED = "ignored"   # event type or action not synchronised


@dataclass
class SyncOutcome:
    status: OutcomeStatus
    message: str
    task_id: Optional[str] = None

    @classmethod
    def processed(cls, message: str, task_id: str = None) -> "SyncOutcome":
        return cls(OutcomeStatus.PROCESSED, message, task_id)

    @classmethod
    def skipped(cls, message: str, task_id: str = None) -> "SyncOutcome":
        return cls(OutcomeStatus.SKIPPED, message, task_id)

    @classmethod
    def ignored(cls, message: str) -> "SyncOutcome":
        return cls(OutcomeStatus.IGNORED, message)
