from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import requests

from .errors import RemoteError
from .models import IssueLink, RepoRef
from .remote import CreatedIssue, RemoteComment, RemoteIssue
from .retry import RetryConfig, run_with_retries

DEFAULT_API_URL = "https://api.github.com"
USER_AGENT = "issuetree-rest/0.1.0"
HTTP_ERROR_STATUS = 400
REQUEST_TIMEOUT = 30


class GitHubAPIError(RemoteError):
    """Raised when the GitHub REST API returns an error."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        response_text: str | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, status=status)
        self.response_text = response_text
        self.retry_after = retry_after


def _api_message(response: requests.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] if response.text else ""
    if isinstance(data, dict) and isinstance(data.get("message"), str):
        return data["message"]
    return ""


def _retry_after(response: requests.Response) -> float | None:
    headers = getattr(response, "headers", None) or {}
    raw = headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


@dataclass
class GitHubRestClient:
    """REST client for the issue, comment and sub-issue endpoints."""

    token: str
    base_url: str = DEFAULT_API_URL
    session: requests.Session | None = None
    retry: RetryConfig | None = None
    _session: requests.Session = field(init=False, repr=False)

    def __post_init__(self) -> None:  # pragma: no cover - simple wiring
        self._session = self.session or requests.Session()
        if self.token:
            self._session.headers.setdefault("Authorization", f"Bearer {self.token}")
        self._session.headers.setdefault("Accept", "application/vnd.github+json")
        self._session.headers.setdefault("User-Agent", USER_AGENT)
        self._session.headers.setdefault("X-GitHub-Api-Version", "2022-11-28")

    # ---- REST helpers -------------------------------------------------
    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
        idempotent: bool = True,
    ) -> Any:
        url = path if path.startswith("http") else f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

        def _run() -> requests.Response:
            response = self._session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=self._session.headers,
                timeout=REQUEST_TIMEOUT,
            )
            if response.status_code >= HTTP_ERROR_STATUS:
                detail = _api_message(response)
                raise GitHubAPIError(
                    f"GitHub API {method} {url} failed with {response.status_code}"
                    + (f": {detail}" if detail else ""),
                    status=response.status_code,
                    response_text=response.text,
                    retry_after=_retry_after(response),
                )
            return response

        label = f"{method} {path}"
        try:
            if idempotent:
                response = run_with_retries(_run, cfg=self.retry, label=label)
            else:
                response = _run()
        except requests.RequestException as exc:
            raise GitHubAPIError(f"GitHub API {method} {url} failed: {exc}") from exc
        if response.text:
            try:
                return response.json()
            except ValueError:
                return response.text
        return None

    def _paginate(self, path: str, *, params: dict[str, Any] | None = None) -> list[Any]:
        params = dict(params or {})
        per_page = params.setdefault("per_page", 100)
        params.setdefault("page", 1)
        results: list[Any] = []
        while True:
            data = self._request("GET", path, params=dict(params))
            if not isinstance(data, list):
                break
            results.extend(data)
            if len(data) < per_page:
                break
            params["page"] = params.get("page", 1) + 1
        return results

    @staticmethod
    def _issue_path(link: IssueLink) -> str:
        return f"/repos/{link.owner}/{link.repo}/issues/{link.number}"

    # ---- reads --------------------------------------------------------
    def fetch_issue(self, link: IssueLink) -> RemoteIssue:
        data = self._request("GET", self._issue_path(link))
        if not isinstance(data, dict):
            raise GitHubAPIError(f"unexpected payload for {link}")
        return RemoteIssue.from_api(data)

    def fetch_comments(self, link: IssueLink) -> list[RemoteComment]:
        data = self._paginate(f"{self._issue_path(link)}/comments")
        return [RemoteComment.from_api(entry) for entry in data if isinstance(entry, dict)]

    def fetch_sub_issues(self, link: IssueLink) -> list[RemoteIssue]:
        data = self._paginate(f"{self._issue_path(link)}/sub_issues")
        return [RemoteIssue.from_api(entry) for entry in data if isinstance(entry, dict)]

    def find_issue_by_title(self, repo: RepoRef, title: str) -> RemoteIssue | None:
        data = self._request(
            "GET",
            "/search/issues",
            params={"q": f'repo:{repo.slug} is:issue in:title "{title}"', "per_page": 100},
        )
        items = data.get("items") if isinstance(data, dict) else None
        for entry in items or []:
            if isinstance(entry, dict) and entry.get("title") == title:
                return RemoteIssue.from_api(entry)
        return None

    def fetch_authenticated_user(self) -> str | None:
        data = self._request("GET", "/user")
        if isinstance(data, dict) and isinstance(data.get("login"), str):
            return data["login"]
        return None

    # ---- writes -------------------------------------------------------
    def create_issue(
        self,
        repo: RepoRef,
        *,
        title: str,
        body: str,
        labels: list[str],
    ) -> CreatedIssue:
        payload: dict[str, Any] = {"title": title, "body": body}
        if labels:
            payload["labels"] = list(labels)
        data = self._request("POST", f"/repos/{repo.slug}/issues", json_body=payload, idempotent=False)
        if not isinstance(data, dict) or not isinstance(data.get("number"), int):
            raise GitHubAPIError(f"create issue in {repo.slug} returned no number")
        created = CreatedIssue(
            id=int(data.get("id") or 0),
            number=data["number"],
            url=str(data.get("html_url") or IssueLink(repo.owner, repo.repo, data["number"]).url),
        )
        return created

    def update_issue_state(self, link: IssueLink, state: str, state_reason: str | None) -> None:
        payload: dict[str, Any] = {"state": state}
        if state == "closed":
            payload["state_reason"] = state_reason or "completed"
        else:
            payload["state_reason"] = "reopened"
        self._request("PATCH", self._issue_path(link), json_body=payload)

    def update_issue_body(self, link: IssueLink, body: str) -> None:
        self._request("PATCH", self._issue_path(link), json_body={"body": body})

    def update_issue_meta(
        self, link: IssueLink, *, title: str | None = None, labels: list[str] | None = None
    ) -> None:
        payload: dict[str, Any] = {}
        if title is not None:
            payload["title"] = title
        if labels is not None:
            payload["labels"] = list(labels)
        if payload:
            self._request("PATCH", self._issue_path(link), json_body=payload)

    def create_comment(self, link: IssueLink, body: str) -> int:
        data = self._request(
            "POST", f"{self._issue_path(link)}/comments", json_body={"body": body}, idempotent=False
        )
        if not isinstance(data, dict) or not isinstance(data.get("id"), int):
            raise GitHubAPIError(f"create comment on {link} returned no id")
        return int(data["id"])

    def update_comment(self, link: IssueLink, comment_id: int, body: str) -> None:
        self._request(
            "PATCH",
            f"/repos/{link.owner}/{link.repo}/issues/comments/{comment_id}",
            json_body={"body": body},
        )

    def delete_comment(self, link: IssueLink, comment_id: int) -> None:
        self._request("DELETE", f"/repos/{link.owner}/{link.repo}/issues/comments/{comment_id}")

    def _issue_id(self, link: IssueLink) -> int:
        issue = self.fetch_issue(link)
        if not issue.id:
            raise GitHubAPIError(f"issue {link} has no database id")
        return issue.id

    def add_sub_issue(self, parent: IssueLink, child: IssueLink) -> None:
        # the endpoint takes the child's database id, not its number
        payload = {"sub_issue_id": self._issue_id(child), "replace_parent": True}
        self._request("POST", f"{self._issue_path(parent)}/sub_issues", json_body=payload)

    def remove_sub_issue(self, parent: IssueLink, child: IssueLink) -> None:
        payload = {"sub_issue_id": self._issue_id(child)}
        self._request("DELETE", f"{self._issue_path(parent)}/sub_issue", json_body=payload)


__all__ = ["GitHubAPIError", "GitHubRestClient"]
