"""Linear tracker client over the GraphQL API."""

import logging
import os
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, List, Optional

import httpx
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from flowgate.core.errors import TrackerError

logger = logging.getLogger(__name__)

LINEAR_API_URL = "https://api.linear.app/graphql"

# Separator placed between an existing description and appended content
DESCRIPTION_SEPARATOR = "\n\n---\n\n"

_ISSUE_FIELDS = """
    id
    identifier
    title
    description
    priority
    url
    createdAt
    updatedAt
    state { id name }
    labels { nodes { name } }
    parent { id identifier }
    team { id key }
"""

_COMMENT_FIELDS = """
    id
    body
    createdAt
    updatedAt
    user { id name }
    issue { id }
    parent { id }
"""


class TrackerIssue(BaseModel):
    """An issue as returned by the tracker."""

    id: str
    identifier: str = ""
    title: str = ""
    description: str = ""
    priority: Optional[int] = None
    status: str
    labels: List[str] = Field(default_factory=list)
    parent_id: Optional[str] = None
    parent_identifier: Optional[str] = None
    team_id: Optional[str] = None
    team_key: Optional[str] = None
    url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_graphql(cls, node: Dict[str, Any]) -> "TrackerIssue":
        parent = node.get("parent") or {}
        team = node.get("team") or {}
        labels = (node.get("labels") or {}).get("nodes") or []
        return cls(
            id=node["id"],
            identifier=node.get("identifier") or "",
            title=node.get("title") or "",
            description=node.get("description") or "",
            priority=node.get("priority"),
            status=(node.get("state") or {}).get("name") or "",
            labels=[label["name"] for label in labels if label.get("name")],
            parent_id=parent.get("id"),
            parent_identifier=parent.get("identifier"),
            team_id=team.get("id"),
            team_key=team.get("key"),
            url=node.get("url"),
            created_at=node.get("createdAt"),
            updated_at=node.get("updatedAt"),
        )


class TrackerComment(BaseModel):
    """A comment as returned by the tracker."""

    id: str
    issue_id: str
    body: str = ""
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    parent_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_graphql(cls, node: Dict[str, Any]) -> "TrackerComment":
        user = node.get("user") or {}
        return cls(
            id=node["id"],
            issue_id=(node.get("issue") or {}).get("id") or "",
            body=node.get("body") or "",
            user_id=user.get("id"),
            user_name=user.get("name"),
            parent_id=(node.get("parent") or {}).get("id"),
            created_at=node.get("createdAt"),
            updated_at=node.get("updatedAt"),
        )


class LinearTracker:
    """Minimal Linear client covering the calls the pipeline makes.

    Every failure (transport, HTTP status, GraphQL ``errors``, missing
    entities) surfaces as ``TrackerError``.
    """

    def __init__(
        self,
        api_key: str,
        api_url: str = LINEAR_API_URL,
        timeout: float = 30.0,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        if not api_key:
            raise ValueError("api_key cannot be empty")
        self.api_url = api_url
        self._client = http_client or httpx.Client(timeout=timeout)
        self._headers = {"Authorization": api_key, "Content-Type": "application/json"}

    def _request(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            response = self._client.post(
                self.api_url,
                json={"query": query, "variables": variables or {}},
                headers=self._headers,
            )
        except httpx.HTTPError as e:
            raise TrackerError(f"Linear request failed: {e}") from e

        if response.status_code != 200:
            raise TrackerError(
                f"Linear API returned {response.status_code}: {response.text[:500]}"
            )

        payload = response.json()
        if payload.get("errors"):
            messages = "; ".join(str(err.get("message", err)) for err in payload["errors"])
            raise TrackerError(f"Linear API returned errors: {messages}")

        return payload.get("data") or {}

    def fetch_issue(self, issue_id: str) -> TrackerIssue:
        """Fetch an issue by id or identifier.

        Raises:
            TrackerError: If the issue does not exist or the request fails
        """
        query = f"query($id: String!) {{ issue(id: $id) {{ {_ISSUE_FIELDS} }} }}"
        node = self._request(query, {"id": issue_id}).get("issue")
        if not node:
            raise TrackerError(f"Issue {issue_id} not found")
        return TrackerIssue.from_graphql(node)

    def fetch_comment(self, comment_id: str) -> TrackerComment:
        query = f"query($id: String!) {{ comment(id: $id) {{ {_COMMENT_FIELDS} }} }}"
        node = self._request(query, {"id": comment_id}).get("comment")
        if not node:
            raise TrackerError(f"Comment {comment_id} not found")
        return TrackerComment.from_graphql(node)

    def _find_state_id(self, issue_id: str, status_name: str) -> str:
        """Resolve a status name to a workflow state of the issue's team (case-insensitive)."""
        query = """
        query($id: String!) {
            issue(id: $id) {
                team { states { nodes { id name } } }
            }
        }
        """
        issue = self._request(query, {"id": issue_id}).get("issue")
        if not issue:
            raise TrackerError(f"Issue {issue_id} not found")
        return self._match_state(issue.get("team"), status_name, f"issue {issue_id}")

    def _find_team_state_id(self, team_id: str, status_name: str) -> str:
        query = """
        query($id: String!) {
            team(id: $id) { states { nodes { id name } } }
        }
        """
        team = self._request(query, {"id": team_id}).get("team")
        if not team:
            raise TrackerError(f"Team {team_id} not found")
        return self._match_state(team, status_name, f"team {team_id}")

    @staticmethod
    def _match_state(team: Optional[Dict[str, Any]], status_name: str, owner: str) -> str:
        states = ((team or {}).get("states") or {}).get("nodes") or []
        wanted = status_name.lower()
        for state in states:
            if (state.get("name") or "").lower() == wanted:
                return state["id"]
        raise TrackerError(f'Status "{status_name}" not found for {owner}')

    def update_status(self, issue_id: str, status_name: str) -> None:
        """Move an issue to the workflow state named ``status_name``."""
        state_id = self._find_state_id(issue_id, status_name)
        mutation = """
        mutation($id: String!, $stateId: String!) {
            issueUpdate(id: $id, input: { stateId: $stateId }) { success }
        }
        """
        data = self._request(mutation, {"id": issue_id, "stateId": state_id})
        if not (data.get("issueUpdate") or {}).get("success"):
            raise TrackerError(f"Failed to move issue {issue_id} to {status_name}")
        logger.debug("Moved issue %s to %s", issue_id, status_name)

    def create_issue(
        self,
        team_id: str,
        title: str,
        description: str = "",
        status_name: Optional[str] = None,
        parent_id: Optional[str] = None,
    ) -> TrackerIssue:
        """Create an issue, optionally as a sub-issue in a given status."""
        issue_input: Dict[str, Any] = {
            "teamId": team_id,
            "title": title,
            "description": description,
        }
        if status_name:
            issue_input["stateId"] = self._find_team_state_id(team_id, status_name)
        if parent_id:
            issue_input["parentId"] = parent_id

        mutation = f"""
        mutation($input: IssueCreateInput!) {{
            issueCreate(input: $input) {{ success issue {{ {_ISSUE_FIELDS} }} }}
        }}
        """
        result = self._request(mutation, {"input": issue_input}).get("issueCreate") or {}
        if not result.get("success") or not result.get("issue"):
            raise TrackerError(f"Failed to create issue '{title}'")
        return TrackerIssue.from_graphql(result["issue"])

    def add_comment(self, issue_id: str, body: str, parent_id: Optional[str] = None) -> str:
        """Post a comment and return its id."""
        comment_input: Dict[str, Any] = {"issueId": issue_id, "body": body}
        if parent_id:
            comment_input["parentId"] = parent_id

        mutation = """
        mutation($input: CommentCreateInput!) {
            commentCreate(input: $input) { success comment { id } }
        }
        """
        result = self._request(mutation, {"input": comment_input}).get("commentCreate") or {}
        comment = result.get("comment")
        if not result.get("success") or not comment:
            raise TrackerError(f"Failed to comment on issue {issue_id}")
        return comment["id"]

    def append_to_description(self, issue_id: str, content: str) -> str:
        """Append ``content`` to the issue description and return the new description."""
        current = self.fetch_issue(issue_id).description
        description = f"{current}{DESCRIPTION_SEPARATOR}{content}" if current else content

        mutation = """
        mutation($id: String!, $description: String!) {
            issueUpdate(id: $id, input: { description: $description }) { success }
        }
        """
        data = self._request(mutation, {"id": issue_id, "description": description})
        if not (data.get("issueUpdate") or {}).get("success"):
            raise TrackerError(f"Failed to update description of issue {issue_id}")
        return description


@lru_cache()
def get_tracker() -> LinearTracker:
    """Get the process-wide tracker client configured from the environment.

    Raises:
        ValueError: If LINEAR_API_KEY is not set
    """
    load_dotenv()
    api_key = os.environ.get("LINEAR_API_KEY")
    if not api_key:
        raise ValueError(
            "Missing required environment variable LINEAR_API_KEY. "
            "Please set it in your environment or .env file."
        )
    api_url = os.environ.get("LINEAR_API_URL", LINEAR_API_URL)
    timeout = float(os.environ.get("LINEAR_HTTP_TIMEOUT", "30"))
    return LinearTracker(api_key, api_url=api_url, timeout=timeout)
