"""
Change-request status backends.

GitHubStatusBackend posts commit statuses through the GitHub REST API;
LoggingStatusBackend only logs them, for runs without a token.
"""
from typing import Optional

import httpx

from ..exceptions import StatusReportError
from ..utils.logging import get_logger

logger = get_logger(__name__)

VALID_STATES = ("pending", "success", "failure", "error")


class GitHubStatusBackend:
    """POST /repos/{owner}/{repo}/statuses/{sha}."""

    def __init__(
        self,
        repository: str,
        token: str,
        context: str,
        api_url: str = "https://api.github.com",
        http_client: Optional[httpx.Client] = None
    ):
        self.repository = repository
        self.context = context
        self.api_url = api_url.rstrip("/")
        self.http = http_client or httpx.Client(timeout=10.0)
        self._headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {token}",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def set_status(
        self,
        sha: str,
        state: str,
        description: str,
        target_url: Optional[str] = None,
    ) -> None:
        if state not in VALID_STATES:
            raise StatusReportError(
                f"Invalid commit status state: {state}",
                context={"state": state}
            )

        payload = {
            "state": state,
            # GitHub rejects descriptions over 140 chars
            "description": description[:140],
            "context": self.context,
        }
        if target_url:
            payload["target_url"] = target_url

        url = f"{self.api_url}/repos/{self.repository}/statuses/{sha}"
        try:
            response = self.http.post(url, json=payload, headers=self._headers)
        except httpx.HTTPError as e:
            raise StatusReportError(
                f"Status API unreachable: {e}",
                context={"sha": sha, "state": state}
            )

        if response.status_code != 201:
            raise StatusReportError(
                f"Status API returned {response.status_code}",
                context={"sha": sha, "state": state, "status": response.status_code}
            )

        logger.info("commit_status_posted", sha=sha[:7], state=state, context=self.context)


class LoggingStatusBackend:
    """Records commit statuses in the log only."""

    def __init__(self, context: str):
        self.context = context

    def set_status(
        self,
        sha: str,
        state: str,
        description: str,
        target_url: Optional[str] = None,
    ) -> None:
        logger.info(
            "commit_status",
            sha=sha[:7],
            state=state,
            description=description,
            target_url=target_url,
            context=self.context
        )
