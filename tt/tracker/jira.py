from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

import requests

from tt.common.logger import log
from tt.core.errors import ExternalServiceError

IN_PROGRESS_JQL = 'assignee = currentUser() AND statusCategory = "In Progress"'
PROJECT_KEY = re.compile(r"^[A-Z][A-Z0-9_]*$")
PAGE_SIZE = 50
# Hard stop so a misbehaving server can't page us forever
MAX_PAGES = 20


@dataclass(frozen=True)
class TrackerCredentials:
    base_url: str
    email: str
    api_token: str

    @classmethod
    def from_settings(cls, settings: dict[str, Any]) -> "TrackerCredentials":
        return cls(
            base_url=str(settings.get("base_url") or "").strip(),
            email=str(settings.get("email") or "").strip(),
            api_token=str(settings.get("api_token") or "").strip(),
        )

    def missing_fields(self) -> list[str]:
        return [name for name in ("base_url", "email", "api_token") if not getattr(self, name)]


@dataclass(frozen=True)
class TrackerTicket:
    key: str
    summary: str
    status: str


@dataclass(frozen=True)
class ConnectionResult:
    success: bool
    identity: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class FetchResult:
    success: bool
    tickets: list[TrackerTicket] = field(default_factory=list)
    error: str | None = None

    @property
    def keys(self) -> list[str]:
        return [t.key for t in self.tickets]


def build_jql(project_filter: str) -> str:
    """In-progress tickets assigned to me, optionally narrowed to a comma separated list of projects."""
    projects = [p.strip().upper() for p in (project_filter or "").split(",") if p.strip()]
    bad = [p for p in projects if not PROJECT_KEY.match(p)]
    if bad:
        raise ExternalServiceError(f"Invalid project key(s) in filter: {', '.join(bad)}")
    if not projects:
        return f"{IN_PROGRESS_JQL} ORDER BY updated DESC"
    return f"{IN_PROGRESS_JQL} AND project in ({', '.join(projects)}) ORDER BY updated DESC"


@dataclass
class JiraClient:
    credentials: TrackerCredentials
    session: requests.Session | None = None
    timeout: int = 30

    def _url(self, path: str) -> str:
        base = self.credentials.base_url.rstrip("/")
        if not base.startswith(("http://", "https://")):
            base = f"https://{base}"
        return f"{base}{path}"

    def get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        http = self.session or requests
        try:
            r = http.get(
                self._url(path),
                params=params or {},
                headers={"Accept": "application/json"},
                auth=(self.credentials.email, self.credentials.api_token),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ExternalServiceError(f"Could not reach Jira: {e}") from e
        if r.status_code in (401, 403):
            raise ExternalServiceError("Authentication failed, check e-mail and API token", r.status_code)
        if r.status_code >= 400:
            raise ExternalServiceError(f"Jira returned {r.status_code}: {r.text[:200]}", r.status_code)
        try:
            data = r.json()
        except ValueError as e:
            raise ExternalServiceError("Jira returned a response that isn't JSON") from e
        if not isinstance(data, dict):
            raise ExternalServiceError("Unexpected Jira response: expected an object")
        return data

    def myself(self) -> str:
        data = self.get("/rest/api/3/myself")
        identity = data.get("displayName") or data.get("emailAddress")
        if not identity:
            raise ExternalServiceError("Unexpected Jira response: no user identity")
        return str(identity)

    def search(self, jql: str) -> list[TrackerTicket]:
        tickets: list[TrackerTicket] = []
        params: dict[str, Any] = {"jql": jql, "fields": "summary,status", "maxResults": PAGE_SIZE}
        for _ in range(MAX_PAGES):
            data = self.get("/rest/api/3/search/jql", params)
            issues = data.get("issues")
            if not isinstance(issues, list):
                raise ExternalServiceError("Unexpected Jira response: issues is not a list")
            for issue in issues:
                if not isinstance(issue, dict) or not issue.get("key"):
                    continue
                fields = issue.get("fields") or {}
                status = (fields.get("status") or {}).get("name", "")
                tickets.append(TrackerTicket(
                    key=str(issue["key"]),
                    summary=str(fields.get("summary") or ""),
                    status=str(status),
                ))
            token = data.get("nextPageToken")
            if not token or data.get("isLast", False):
                break
            params = dict(params, nextPageToken=token)
        return tickets


def test_connection(credentials: TrackerCredentials, session: requests.Session | None = None) -> ConnectionResult:
    missing = credentials.missing_fields()
    if missing:
        return ConnectionResult(success=False, error=f"Missing {', '.join(missing)}")
    try:
        identity = JiraClient(credentials, session=session).myself()
    except ExternalServiceError as e:
        log.warning(f"Jira connection test failed: {e}")
        return ConnectionResult(success=False, error=str(e))
    log.info(f"Jira connection test succeeded as '{identity}'")
    return ConnectionResult(success=True, identity=identity)


def fetch_assigned_in_progress(credentials: TrackerCredentials, project_filter: str = "",
                               session: requests.Session | None = None) -> FetchResult:
    missing = credentials.missing_fields()
    if missing:
        return FetchResult(success=False, error=f"Missing {', '.join(missing)}")
    try:
        jql = build_jql(project_filter)
        tickets = JiraClient(credentials, session=session).search(jql)
    except ExternalServiceError as e:
        log.warning(f"Jira ticket fetch failed: {e}")
        return FetchResult(success=False, error=str(e))
    log.info(f"Fetched {len(tickets)} in-progress tickets from Jira")
    return FetchResult(success=True, tickets=tickets)
