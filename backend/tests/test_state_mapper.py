# tests/test_state_mapper.py — External state → column slug, and repository resolution
import uuid
from types import SimpleNamespace

import pytest

from issue_sync.errors import ValidationFailure
from issue_sync.resolver import split_repository, resolve_integration
from issue_sync.state_mapper import StateMapper, default_status_for_state
from models import IntegrationType
from tests.fakes import FakeRules, FakeColumns, FakeIntegrations


def test_default_mapping():
    assert default_status_for_state("open") == "to-do"
    assert default_status_for_state("closed") == "done"


@pytest.mark.parametrize("state", ["merged", "OPEN", "", "draft"])
def test_unknown_state_fails_loudly(state):
    with pytest.raises(ValidationFailure):
        default_status_for_state(state)


@pytest.mark.asyncio
async def test_rule_column_slug_supersedes_default():
    rules, columns = FakeRules(), FakeColumns()
    qa = columns.add("p1", "qa")
    await rules.insert("p1", "gitea", "issue_opened", qa.id)

    mapper = StateMapper(rules, columns)
    assert await mapper.map_issue_state("p1", "gitea", "open") == "qa"
    assert await mapper.map_issue_state("p1", "gitea", "closed") == "done"


@pytest.mark.asyncio
async def test_rule_pointing_at_other_project_column_falls_back():
    rules, columns = FakeRules(), FakeColumns()
    foreign = columns.add("p2", "qa")
    await rules.insert("p1", "gitea", "issue_closed", foreign.id)

    mapper = StateMapper(rules, columns)
    assert await mapper.resolve_status("p1", "gitea", "issue_closed", "done") == "done"


@pytest.mark.asyncio
async def test_invalid_state_is_rejected_even_with_rules():
    mapper = StateMapper(FakeRules(), FakeColumns())
    with pytest.raises(ValidationFailure):
        await mapper.map_issue_state("p1", "gitea", "locked")


# ============================================================
# REPOSITORY RESOLVER
# ============================================================

def test_split_repository():
    assert split_repository("acme/widgets") == ("acme", "widgets")


@pytest.mark.parametrize("full_name", ["acme", "acme/", "/widgets", "a/b/c", "", None])
def test_split_repository_rejects_malformed(full_name):
    with pytest.raises(ValidationFailure):
        split_repository(full_name)


@pytest.mark.asyncio
async def test_resolve_integration_is_case_insensitive_and_typed():
    gitea = SimpleNamespace(
        id=str(uuid.uuid4()), project_id="p1", type=IntegrationType.GITEA,
        repository_owner="Acme", repository_name="Widgets", is_active=True,
    )
    integrations = FakeIntegrations(gitea)

    assert await resolve_integration(integrations, "acme/widgets", "gitea") is gitea
    assert await resolve_integration(integrations, "acme/widgets", "github") is None
    assert await resolve_integration(integrations, "acme/gadgets", "gitea") is None
