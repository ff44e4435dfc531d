"""
Acceptance tests run against a freshly deployed endpoint.
"""
from typing import Dict, List, Optional

import httpx

from ..exceptions import AcceptanceTestError
from ..utils.logging import get_logger

logger = get_logger(__name__)


class AcceptanceTestRunner:
    """GETs each configured path and requires a 2xx answer."""

    def __init__(
        self,
        paths: List[str],
        http_client: Optional[httpx.Client] = None,
        request_timeout: float = 10.0
    ):
        self.paths = paths
        self.http = http_client or httpx.Client(follow_redirects=True)
        self.request_timeout = request_timeout

    def run(self, endpoint: str) -> Dict[str, int]:
        """
        Check every path under endpoint.

        Returns:
            Mapping of URL to HTTP status for the passed checks

        Raises:
            AcceptanceTestError: On the first failing check
        """
        results = {}
        for path in self.paths:
            url = endpoint.rstrip("/") + "/" + path.lstrip("/")
            try:
                response = self.http.get(url, timeout=self.request_timeout)
            except httpx.HTTPError as e:
                raise AcceptanceTestError(
                    f"Acceptance check {url} failed: {e}",
                    context={"url": url, "passed": list(results)}
                )
            if not response.is_success:
                raise AcceptanceTestError(
                    f"Acceptance check {url} returned {response.status_code}",
                    context={"url": url, "status": response.status_code, "passed": list(results)}
                )
            results[url] = response.status_code
            logger.info("acceptance_check_passed", url=url, status=response.status_code)

        return results
