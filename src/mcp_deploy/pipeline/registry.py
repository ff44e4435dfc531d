"""
Registry client: push, scan and idempotent delete with bounded retries.
"""
from typing import Callable, Optional

from ..backends.protocols import RegistryBackend
from ..config.settings import PipelineConfig
from ..exceptions import (
    CleanupError,
    PushError,
    ScanError,
    SecurityError,
    TransientRegistryError,
)
from ..models.deployment import BuildArtifact, VulnerabilityReport
from ..utils.logging import get_logger
from ..utils.retry import call_with_retry

logger = get_logger(__name__)


class RegistryClient:
    """
    Wraps a RegistryBackend with retry and policy.

    Transient failures are retried with exponential backoff up to
    `registry_max_retries`; once exhausted they surface as PushError,
    ScanError or CleanupError depending on the operation.
    """

    def __init__(
        self,
        backend: RegistryBackend,
        config: PipelineConfig,
        sleep: Optional[Callable[[float], None]] = None
    ):
        self.backend = backend
        self.config = config
        self._sleep = sleep

    def _call(self, func, *args):
        return call_with_retry(
            func,
            *args,
            max_retries=self.config.registry_max_retries,
            min_wait_seconds=self.config.registry_backoff_min,
            max_wait_seconds=self.config.registry_backoff_max,
            sleep=self._sleep,
        )

    def push(self, artifact: BuildArtifact) -> BuildArtifact:
        """
        Push the artifact.

        Returns:
            A copy of the artifact carrying the registry digest

        Raises:
            PushError: If the push failed permanently or retries ran out
        """
        logger.info("image_push_started", image=artifact.reference)
        try:
            digest = self._call(self.backend.push, artifact)
        except TransientRegistryError as e:
            raise PushError(
                f"Push of {artifact.reference} failed after retries: {e}",
                context={"image": artifact.reference, **e.context}
            )
        logger.info("image_pushed", image=artifact.reference, digest=digest)
        return artifact.model_copy(update={"digest": digest or artifact.digest})

    def scan(self, artifact: BuildArtifact) -> VulnerabilityReport:
        """
        Scan the pushed artifact.

        Raises:
            ScanError: If the scan could not complete
        """
        try:
            report = self._call(self.backend.scan, artifact)
        except TransientRegistryError as e:
            raise ScanError(
                f"Scan of {artifact.reference} failed after retries: {e}",
                context={"image": artifact.reference, **e.context}
            )
        logger.info("image_scanned", image=artifact.reference, counts=report.counts)
        return report

    def enforce_policy(self, report: VulnerabilityReport) -> None:
        """
        Raise SecurityError if the report has findings at or above the threshold.
        """
        threshold = self.config.scan_severity_threshold
        blocking = report.blocking_findings(threshold)
        if blocking:
            logger.error(
                "scan_policy_violation",
                image=report.image_reference,
                threshold=threshold,
                blocking=len(blocking)
            )
            raise SecurityError(
                f"{len(blocking)} vulnerabilities at or above {threshold} in {report.image_reference}",
                context={
                    "image": report.image_reference,
                    "threshold": threshold,
                    "vulnerabilities": [f.vulnerability_id for f in blocking[:20]],
                }
            )

    def scan_and_enforce(self, artifact: BuildArtifact) -> VulnerabilityReport:
        report = self.scan(artifact)
        self.enforce_policy(report)
        return report

    def delete(self, artifact: BuildArtifact) -> bool:
        """
        Delete the artifact; deleting an absent artifact is a no-op.

        Returns:
            True if something was deleted, False if it was already gone

        Raises:
            CleanupError: If the registry refused or retries ran out
        """
        try:
            deleted = self._call(self.backend.delete, artifact)
        except TransientRegistryError as e:
            raise CleanupError(
                f"Delete of {artifact.reference} failed after retries: {e}",
                context={"image": artifact.reference, **e.context}
            )
        logger.info("image_deleted" if deleted else "image_already_absent", image=artifact.reference)
        return deleted
