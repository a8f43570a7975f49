"""HTTP client for the GitHub REST API.

Thin wrapper over ``httpx.Client`` exposing only the primitives the memo
stores need: issues, comments, reactions, labels, repository contents,
issue search and the authenticated user. Error statuses are translated to
the package's exception hierarchy; nothing is retried here.
"""
import logging
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote

import httpx

from issuememo_mcp.config import TrackerConfig
from issuememo_mcp.exceptions import (
    ConflictError,
    ErrorCode,
    NotFoundError,
    UpstreamError,
)

logger = logging.getLogger(__name__)

GITHUB_ACCEPT = "application/vnd.github+json"
GITHUB_API_VERSION = "2022-11-28"

JsonValue = Union[Dict[str, Any], List[Any]]

_NOT_FOUND_CODES = {
    "memo": ErrorCode.MEMO_NOT_FOUND,
    "reaction": ErrorCode.RESOURCE_NOT_FOUND,
    "label": ErrorCode.LABEL_NOT_FOUND,
    "file": ErrorCode.FILE_NOT_FOUND,
}


class GitHubClient:
    """Synchronous GitHub REST client bound to one repository.

    The caller owns cancellation: every request is bounded by the config's
    timeout, and an ``httpx.Client`` with its own timeouts or transport can
    be injected instead.
    """

    def __init__(self, config: TrackerConfig, http: Optional[httpx.Client] = None):
        """Initialize the client.

        Args:
            config: Tracker configuration; must carry token, owner and repo.
            http: Optional pre-built httpx client (tests pass one with a
                MockTransport). When given, its base URL and headers are used
                as-is.
        """
        self.config = config.require_configured()
        self._owns_http = http is None
        self._http = http or httpx.Client(
            base_url=config.api_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {config.token}",
                "Accept": GITHUB_ACCEPT,
                "X-GitHub-Api-Version": GITHUB_API_VERSION,
            },
            timeout=config.timeout,
        )
        self._repo_path = f"/repos/{quote(config.owner)}/{quote(config.repo)}"

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_http:
            self._http.close()

    # ------------------------------------------------------------------
    # Core request handling
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        *,
        kind: str,
        identifier: str = "",
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        conflict_on_422: bool = False,
        expect_body: bool = True,
    ) -> Optional[JsonValue]:
        """Send one request and translate the outcome.

        Raises:
            NotFoundError: On 404.
            ConflictError: On 409, or on 422 when conflict_on_422 is set
                (GitHub answers a missing/stale file sha that way).
            UpstreamError: On any other error status, transport failure or
                unparsable body.
        """
        operation = f"{method} {path}"
        logger.debug(f"GitHub request: {operation} params={params}")
        try:
            response = self._http.request(method, path, params=params, json=json)
        except httpx.TransportError as e:
            raise UpstreamError(
                f"GitHub unreachable during {operation}",
                operation=operation,
                code=ErrorCode.UPSTREAM_UNREACHABLE,
                original_error=e,
            ) from e

        status = response.status_code
        if status == 404:
            raise NotFoundError(
                kind,
                identifier or path,
                code=_NOT_FOUND_CODES.get(kind, ErrorCode.RESOURCE_NOT_FOUND),
            )
        if status == 409 or (status == 422 and conflict_on_422):
            raise ConflictError(
                f"Stale write rejected for {kind} '{identifier or path}'",
                path=identifier or path,
                token=(json or {}).get("sha"),
            )
        if status >= 400:
            raise UpstreamError(
                f"GitHub returned {status} for {operation}: {response.text[:200]}",
                status_code=status,
                operation=operation,
            )

        if not expect_body or status == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                f"Unparsable response for {operation}",
                status_code=status,
                operation=operation,
                code=ErrorCode.UPSTREAM_BAD_RESPONSE,
                original_error=e,
            ) from e

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    def list_issues(
        self,
        state: str = "open",
        labels: Optional[str] = None,
        per_page: int = 30,
        page: int = 1,
        sort: str = "updated",
        direction: str = "desc",
        creator: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """List one page of issues (pull requests included, as GitHub does)."""
        params: Dict[str, Any] = {
            "state": state,
            "per_page": per_page,
            "page": page,
            "sort": sort,
            "direction": direction,
        }
        if labels:
            params["labels"] = labels
        if creator:
            params["creator"] = creator
        return self._request(
            "GET", f"{self._repo_path}/issues", kind="issues", params=params
        ) or []

    def get_issue(self, number: int) -> Dict[str, Any]:
        return self._request(
            "GET", f"{self._repo_path}/issues/{number}",
            kind="memo", identifier=f"memos/{number}",
        )

    def create_issue(self, title: str, body: str, labels: List[str]) -> Dict[str, Any]:
        return self._request(
            "POST", f"{self._repo_path}/issues", kind="issue",
            json={"title": title, "body": body, "labels": labels},
        )

    def update_issue(
        self,
        number: int,
        title: Optional[str] = None,
        body: Optional[str] = None,
        labels: Optional[List[str]] = None,
        state: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Patch an issue; only arguments that are not None are sent."""
        payload: Dict[str, Any] = {}
        if title is not None:
            payload["title"] = title
        if body is not None:
            payload["body"] = body
        if labels is not None:
            payload["labels"] = labels
        if state is not None:
            payload["state"] = state
        return self._request(
            "PATCH", f"{self._repo_path}/issues/{number}",
            kind="memo", identifier=f"memos/{number}", json=payload,
        )

    # ------------------------------------------------------------------
    # Comments and reactions
    # ------------------------------------------------------------------

    def list_comments(self, number: int, per_page: int = 100, page: int = 1) -> List[Dict[str, Any]]:
        return self._request(
            "GET", f"{self._repo_path}/issues/{number}/comments",
            kind="memo", identifier=f"memos/{number}",
            params={"per_page": per_page, "page": page},
        ) or []

    def create_comment(self, number: int, body: str) -> Dict[str, Any]:
        return self._request(
            "POST", f"{self._repo_path}/issues/{number}/comments",
            kind="memo", identifier=f"memos/{number}", json={"body": body},
        )

    def list_reactions(self, number: int, per_page: int = 100) -> List[Dict[str, Any]]:
        return self._request(
            "GET", f"{self._repo_path}/issues/{number}/reactions",
            kind="memo", identifier=f"memos/{number}",
            params={"per_page": per_page},
        ) or []

    def create_reaction(self, number: int, content: str) -> Dict[str, Any]:
        return self._request(
            "POST", f"{self._repo_path}/issues/{number}/reactions",
            kind="memo", identifier=f"memos/{number}", json={"content": content},
        )

    def delete_reaction(self, number: int, reaction_id: int) -> None:
        self._request(
            "DELETE", f"{self._repo_path}/issues/{number}/reactions/{reaction_id}",
            kind="reaction", identifier=f"memos/{number}/reactions/{reaction_id}",
            expect_body=False,
        )

    # ------------------------------------------------------------------
    # Labels
    # ------------------------------------------------------------------

    def get_label(self, name: str) -> Dict[str, Any]:
        return self._request(
            "GET", f"{self._repo_path}/labels/{quote(name, safe='')}",
            kind="label", identifier=name,
        )

    def create_label(self, name: str, color: str) -> Dict[str, Any]:
        """Create a label. A 422 here means it already exists; the caller decides."""
        return self._request(
            "POST", f"{self._repo_path}/labels",
            kind="label", identifier=name, json={"name": name, "color": color},
        )

    def list_labels(self, per_page: int = 100, page: int = 1) -> List[Dict[str, Any]]:
        return self._request(
            "GET", f"{self._repo_path}/labels", kind="labels",
            params={"per_page": per_page, "page": page},
        ) or []

    # ------------------------------------------------------------------
    # Repository contents
    # ------------------------------------------------------------------

    def _contents_path(self, path: str) -> str:
        return f"{self._repo_path}/contents/{quote(path.strip('/'), safe='/')}"

    def get_content(self, path: str) -> JsonValue:
        """Fetch a file (dict with base64 ``content``) or a directory listing (list)."""
        return self._request(
            "GET", self._contents_path(path), kind="file", identifier=path,
            params={"ref": self.config.branch},
        )

    def put_content(
        self,
        path: str,
        content_b64: str,
        message: str,
        sha: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create (no sha) or replace (sha of the version being replaced) a file."""
        payload: Dict[str, Any] = {
            "message": message,
            "content": content_b64,
            "branch": self.config.branch,
        }
        if sha:
            payload["sha"] = sha
        return self._request(
            "PUT", self._contents_path(path), kind="file", identifier=path,
            json=payload, conflict_on_422=True,
        )

    def delete_content(self, path: str, message: str, sha: str) -> None:
        self._request(
            "DELETE", self._contents_path(path), kind="file", identifier=path,
            json={"message": message, "sha": sha, "branch": self.config.branch},
            conflict_on_422=True, expect_body=False,
        )

    # ------------------------------------------------------------------
    # Users and search
    # ------------------------------------------------------------------

    def get_authenticated_user(self) -> Dict[str, Any]:
        return self._request("GET", "/user", kind="user", identifier="me")

    def search_issues(self, query: str, per_page: int = 1) -> Dict[str, Any]:
        return self._request(
            "GET", "/search/issues", kind="search",
            params={"q": query, "per_page": per_page},
        ) or {}

    @property
    def repo_slug(self) -> str:
        return f"{self.config.owner}/{self.config.repo}"
