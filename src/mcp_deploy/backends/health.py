"""
HTTP health checking with exponential backoff and a hard timeout.
"""
import time  # Funciones de tiempo para sleep y medición de elapsed time
from typing import Callable, Optional  # Type hints

import httpx  # Cliente HTTP para health checks

from ..models.deployment import HealthCheckResult  # Resultado del health check
from ..utils.logging import get_logger  # Logger estructurado

logger = get_logger(__name__)


class HttpHealthChecker:
    """
    Polls a URL until it answers the expected status or the timeout passes.

    Retry strategy:
    - Initial interval: `interval` seconds
    - Backoff multiplier: `backoff`
    - Interval capped at `max_interval`
    - Never sleeps past the deadline

    A timeout is reported as an unhealthy result, not raised.
    """

    def __init__(
        self,
        interval: float = 5.0,
        backoff: float = 1.5,
        max_interval: float = 30.0,
        expected_status: int = 200,
        request_timeout: float = 5.0,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        self.interval = interval
        self.backoff = backoff
        self.max_interval = max_interval
        self.expected_status = expected_status
        self.request_timeout = request_timeout
        self.http = http_client or httpx.Client(follow_redirects=True)
        self._sleep = sleep
        self._clock = clock

    def check(self, url: str, timeout: float) -> HealthCheckResult:
        logger.info(
            "healthcheck_started",
            url=url,
            timeout=timeout,
            expected_status=self.expected_status
        )

        # Monotonic clock: immune to system clock changes
        start_time = self._clock()
        deadline = start_time + timeout
        attempt = 0
        current_interval = self.interval
        last_error = None
        last_status_code = None

        while True:
            attempt += 1
            try:
                response = self.http.get(url, timeout=self.request_timeout)
                last_status_code = response.status_code

                if response.status_code == self.expected_status:
                    elapsed = round(self._clock() - start_time, 2)
                    logger.info(
                        "healthcheck_success",
                        url=url,
                        attempts=attempt,
                        elapsed=elapsed
                    )
                    return HealthCheckResult(
                        healthy=True,
                        url=url,
                        response_code=response.status_code,
                        attempts=attempt,
                        elapsed_seconds=elapsed
                    )

                last_error = f"Unexpected status code: {response.status_code}"
                logger.debug(
                    "healthcheck_unexpected_status",
                    url=url,
                    status_code=response.status_code,
                    expected=self.expected_status
                )

            except httpx.HTTPError as e:
                last_error = str(e) or type(e).__name__
                logger.debug(
                    "healthcheck_connection_failed",
                    url=url,
                    attempt=attempt,
                    error=last_error
                )

            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            self._sleep(min(current_interval, self.max_interval, remaining))
            current_interval *= self.backoff

        elapsed = round(self._clock() - start_time, 2)
        logger.error(
            "healthcheck_timeout",
            url=url,
            attempts=attempt,
            elapsed=elapsed,
            last_error=last_error
        )
        return HealthCheckResult(
            healthy=False,
            url=url,
            response_code=last_status_code,
            attempts=attempt,
            elapsed_seconds=elapsed,
            error=last_error or "Timeout reached"
        )
