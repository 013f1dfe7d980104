# tests/conftest.py — Shared test fixtures
import os
import re
import json
import uuid
from typing import Optional

import httpx
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["SYNC_RUN_COLUMN_MIGRATION"] = "false"

from models import Base, User, Organisation, Project, Integration, IntegrationType, UserRole
from auth import AuthService
from database import get_db_session
from issue_sync.column_migration import ensure_canonical_columns
from issue_sync.repositories import SqlColumnRepository
from issue_sync.runtime import SyncRuntime
from issue_sync.signature import compute_signature
from main import app

WEBHOOK_SECRET = "acme-widgets-secret"
REPO_URL = "https://gitea.example.com/acme/widgets"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


# ============================================================
# FAKE TRACKER (Gitea/GitHub REST surface over httpx.MockTransport)
# ============================================================

class FakeTracker:
    """Records every outbound call and answers like a small Gitea/GitHub server"""

    def __init__(self):
        self.requests = []
        self.labels = {}            # name -> {"id", "name", "color"}
        self.issue_labels = {}      # issue number -> [names]
        self.issues = {}            # number -> body
        self.fail = set()           # (method, path-suffix) pairs that answer 500
        self.page_cap = 50          # Gitea MAX_RESPONSE_ITEMS
        self._next_issue = 100

    def calls(self, method: str = None):
        return [(r.method, r.url.path) for r in self.requests if method is None or r.method == method]

    def _fails(self, method: str, path: str) -> bool:
        return any(method == m and path.endswith(suffix) for m, suffix in self.fail)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        method, path = request.method, request.url.path
        if self._fails(method, path):
            return httpx.Response(500, json={"message": "boom"})

        body = json.loads(request.content) if request.content else {}

        m = re.search(r"/labels/([^/]+)$", path)
        if method == "GET" and m and "/issues/" not in path:
            label = self.labels.get(m.group(1))
            return httpx.Response(200, json=label) if label else httpx.Response(404, json={"message": "Not Found"})
        if method == "GET" and path.endswith("/labels"):
            page = int(request.url.params.get("page", "1"))
            limit = min(int(request.url.params.get("limit", str(self.page_cap))), self.page_cap)
            start = (page - 1) * limit
            return httpx.Response(200, json=list(self.labels.values())[start:start + limit])
        if method == "POST" and path.endswith("/labels") and "/issues/" not in path:
            label = {"id": len(self.labels) + 1, "name": body["name"], "color": body["color"]}
            self.labels[body["name"]] = label
            return httpx.Response(201, json=label)

        m = re.search(r"/issues/(\d+)/labels$", path)
        if method == "POST" and m:
            names = self.issue_labels.setdefault(int(m.group(1)), [])
            names.extend(n for n in body["labels"] if n not in names)
            return httpx.Response(200, json=[{"name": n} for n in names])
        m = re.search(r"/issues/(\d+)/labels/([^/]+)$", path)
        if method == "DELETE" and m:
            return httpx.Response(204)

        if method == "POST" and path.endswith("/issues"):
            self._next_issue += 1
            number = self._next_issue
            self.issues[number] = body
            return httpx.Response(201, json={"number": number, "html_url": f"{REPO_URL}/issues/{number}"})
        m = re.search(r"/issues/(\d+)$", path)
        if method == "PATCH" and m:
            self.issues.setdefault(int(m.group(1)), {}).update(body)
            return httpx.Response(200, json={"number": int(m.group(1))})

        return httpx.Response(404, json={"message": "Not Found"})


@pytest_asyncio.fixture(scope="function")
async def tracker():
    return FakeTracker()


@pytest_asyncio.fixture(scope="function")
async def runtime(session_factory, tracker):
    return SyncRuntime(session_factory, transport=httpx.MockTransport(tracker.handler))


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, runtime):
    """HTTP test client with overridden DB dependency and sync runtime"""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    previous_runtime = app.state.sync
    app.state.sync = runtime
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.state.sync = previous_runtime
    app.dependency_overrides.clear()


# ============================================================
# ORGANISATION, USERS, PROJECT, INTEGRATION
# ============================================================

@pytest_asyncio.fixture
async def test_org(db_session):
    """Create a test organisation"""
    org = Organisation(
        id=str(uuid.uuid4()),
        name="Test Organisation",
        slug="test-org",
        is_active=True,
    )
    db_session.add(org)
    await db_session.commit()
    await db_session.refresh(org)
    return org


async def _make_user(db_session, org, email, role, password="TestPassword123!"):
    user = User(
        id=str(uuid.uuid4()),
        email=email,
        display_name=email.split("@")[0],
        password_hash=AuthService.hash_password(password),
        organisation_id=org.id,
        role=role,
        is_active=True,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_user(db_session, test_org):
    """Create a test user"""
    return await _make_user(db_session, test_org, "testuser@boardsync.dev", UserRole.USER)


@pytest_asyncio.fixture
async def admin_user(db_session, test_org):
    """Create an organisation admin"""
    return await _make_user(db_session, test_org, "admin@boardsync.dev", UserRole.ORG_ADMIN, "AdminPassword123!")


@pytest_asyncio.fixture
async def project(db_session, test_org):
    """Project with the four canonical columns"""
    p = Project(id=str(uuid.uuid4()), organisation_id=test_org.id, name="Widgets", slug="widgets")
    db_session.add(p)
    await db_session.commit()
    await db_session.refresh(p)
    await ensure_canonical_columns(SqlColumnRepository(db_session), p.id)
    return p


@pytest_asyncio.fixture
async def integration(db_session, project):
    """Active Gitea integration for acme/widgets bound to the project"""
    i = Integration(
        id=str(uuid.uuid4()),
        project_id=project.id,
        type=IntegrationType.GITEA,
        base_url="https://gitea.example.com",
        repository_owner="acme",
        repository_name="widgets",
        webhook_secret=WEBHOOK_SECRET,
        access_token="gitea-token",
        config={},
        is_active=True,
    )
    db_session.add(i)
    await db_session.commit()
    await db_session.refresh(i)
    return i


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token_data = {
        "sub": user.id,
        "email": user.email,
        "organisation_id": user.organisation_id,
        "role": user.role.value if isinstance(user.role, UserRole) else user.role,
    }
    token = AuthService.create_access_token(token_data)
    return {"Authorization": f"Bearer {token}"}


# ============================================================
# WEBHOOK HELPERS
# ============================================================

def issue_payload(
    action: str,
    number: int = 42,
    title: str = "Fix crash",
    body: Optional[str] = "Steps to repro...",
    state: str = "open",
    full_name: str = "acme/widgets",
) -> bytes:
    owner, _, name = full_name.partition("/")
    return json.dumps({
        "action": action,
        "issue": {
            "id": 1000 + number,
            "number": number,
            "title": title,
            "body": body,
            "state": state,
            "html_url": f"https://gitea.example.com/{full_name}/issues/{number}",
            "user": {"login": "octo", "email": "octo@example.com"},
        },
        "repository": {"name": name, "full_name": full_name, "owner": {"login": owner}},
    }).encode("utf-8")


def webhook_headers(raw_body: bytes, event: str = "issues", secret: Optional[str] = WEBHOOK_SECRET) -> dict:
    headers = {"Content-Type": "application/json", "X-Gitea-Event": event}
    if secret:
        headers["X-Gitea-Signature"] = compute_signature(raw_body, secret)
    return headers


async def post_issue_event(client, raw_body: bytes, **kwargs):
    return await client.post("/api/v1/webhooks/gitea", content=raw_body, headers=webhook_headers(raw_body, **kwargs))


async def fetch_all(session_factory, model, *criteria):
    """Rows as seen by a fresh session (the fixture session caches instances)"""
    from sqlalchemy import select
    async with session_factory() as session:
        result = await session.execute(select(model).where(*criteria))
        return list(result.scalars().all())
