# issue_sync/tracker_client.py — REST client for the external issue trackers
#
# Two flavours share one surface:
#   gitea   {base_url}/api/v1/repos/{owner}/{repo}/...   Authorization: token <t>
#   github  {base_url}/repos/{owner}/{repo}/...          Authorization: Bearer <t>
# Any non-2xx response (other than a label lookup miss) raises DownstreamFailure.
import logging
from typing import Optional, List, Dict, Any
from urllib.parse import quote

import httpx

from issue_sync import config
from issue_sync.errors import DownstreamFailure
from models import Integration

logger = logging.getLogger("boardsync.tracker")


class TrackerClient:
    def __init__(
        self,
        integration_type: str,
        base_url: str,
        owner: str,
        repo: str,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = None,
    ):
        self.integration_type = integration_type
        self.owner = owner
        self.repo = repo
        self.token = token
        self.transport = transport
        self.timeout = timeout or config.HTTP_TIMEOUT

        root = base_url.rstrip("/")
        self.api_root = f"{root}/api/v1" if integration_type == "gitea" else root

    @classmethod
    def for_integration(cls, integration: Integration, transport=None) -> "TrackerClient":
        return cls(
            integration_type=integration.type.value,
            base_url=integration.base_url,
            owner=integration.repository_owner,
            repo=integration.repository_name,
            token=integration.access_token,
            transport=transport,
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.token:
            scheme = "token" if self.integration_type == "gitea" else "Bearer"
            headers["Authorization"] = f"{scheme} {self.token}"
        if self.integration_type == "github":
            headers["Accept"] = "application/vnd.github+json"
        return headers

    def _repo_path(self, suffix: str) -> str:
        return f"{self.api_root}/repos/{quote(self.owner, safe='')}/{quote(self.repo, safe='')}/{suffix}"

    async def _request(self, method: str, suffix: str, json: Any = None, allow_404: bool = False):
        url = self._repo_path(suffix)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.request(method, url, headers=self._headers(), json=json)
        except httpx.HTTPError as e:
            raise DownstreamFailure(f"{self.integration_type} {method} {suffix} failed: {e}")

        if allow_404 and resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise DownstreamFailure(
                f"{self.integration_type} API error: {resp.status_code} - {resp.text[:200]}",
                upstream_status=resp.status_code,
            )
        if resp.status_code == 204 or not resp.content:
            return {}
        return resp.json()

    # ----------------------------------------------------------
    # Labels
    # ----------------------------------------------------------

    async def get_label(self, name: str) -> Optional[Dict[str, Any]]:
        """Repository label by name, or None when it does not exist"""
        if self.integration_type == "github":
            return await self._request("GET", f"labels/{quote(name, safe='')}", allow_404=True)

        # Gitea has no lookup by name and caps every page at its MAX_RESPONSE_ITEMS
        for page in range(1, config.LABEL_MAX_PAGES + 1):
            labels = await self._request("GET", f"labels?page={page}&limit={config.LABEL_PAGE_SIZE}") or []
            if not labels:
                return None
            for label in labels:
                if label.get("name", "").lower() == name.lower():
                    return label
        logger.warning(f"Gave up looking for label '{name}' after {config.LABEL_MAX_PAGES} pages")
        return None

    async def create_label(self, name: str, color: str) -> Dict[str, Any]:
        color = color.lstrip("#")
        if self.integration_type == "gitea":
            color = f"#{color}"
        return await self._request("POST", "labels", json={"name": name, "color": color})

    async def add_labels(self, issue_number: int, names: List[str]) -> List[Dict[str, Any]]:
        return await self._request("POST", f"issues/{issue_number}/labels", json={"labels": names})

    async def remove_label(self, issue_number: int, name: str) -> None:
        if self.integration_type == "github":
            await self._request("DELETE", f"issues/{issue_number}/labels/{quote(name, safe='')}", allow_404=True)
            return

        label = await self.get_label(name)
        if not label:
            logger.info(f"Label '{name}' not present in {self.owner}/{self.repo}, nothing to remove")
            return
        await self._request("DELETE", f"issues/{issue_number}/labels/{label['id']}", allow_404=True)

    # ----------------------------------------------------------
    # Issues
    # ----------------------------------------------------------

    async def create_issue(self, title: str, body: str) -> Dict[str, Any]:
        return await self._request("POST", "issues", json={"title": title, "body": body})

    async def edit_issue(
        self,
        issue_number: int,
        title: Optional[str] = None,
        body: Optional[str] = None,
        state: Optional[str] = None,
    ) -> Dict[str, Any]:
        changes = {k: v for k, v in {"title": title, "body": body, "state": state}.items() if v is not None}
        return await self._request("PATCH", f"issues/{issue_number}", json=changes)
