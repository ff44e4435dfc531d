"""
State management for deployment revisions.

Keeps an ordered revision history per namespace in JSON files written
atomically, and enforces a single pending revision per namespace.
"""
import json  # Serialización y deserialización de JSON
import os  # Operaciones del sistema operativo (rutas, archivos)
import tempfile  # Creación de archivos temporales
import threading  # Exclusión mutua entre hilos que escriben el historial
from datetime import datetime, timezone  # Manejo de fechas y timestamps
from pathlib import Path  # Manejo moderno de rutas de archivos
from typing import Optional, List, Dict, Any  # Type hints

from ..models.deployment import (  # Modelos Pydantic de revisiones
    BuildArtifact,
    DeploymentRevision,
    DeploymentSpec,
    HealthCheckResult,
    RevisionStatus,
)
from ..exceptions import ConfigurationError, ConcurrentDeploymentError
from .logging import get_logger  # Logger estructurado

logger = get_logger(__name__)


class RevisionStore:
    """Persists revision history per namespace with atomic writes."""

    def __init__(self, revision_dir: Path):
        """
        Initialize the revision store.

        Persisted revisions still marked pending belong to a process that
        died mid-deploy; they are marked failed so the namespace is usable.

        Args:
            revision_dir: Directory holding one <namespace>.json per namespace
        """
        self.revision_dir = revision_dir
        self.revision_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._recover_interrupted()

    def _namespace_file(self, namespace: str) -> Path:
        return self.revision_dir / f"{namespace}.json"

    def _namespace_files(self) -> List[Path]:
        # Skip leftover .tmp_ files from interrupted writes
        return sorted(p for p in self.revision_dir.glob("*.json") if not p.name.startswith("."))

    def _atomic_write_json(self, filepath: Path, data: Dict[str, Any]) -> None:
        """
        Write JSON file atomically using temp file + rename.

        Args:
            filepath: Target file path
            data: Data to serialize as JSON
        """
        dir_path = filepath.parent
        dir_path.mkdir(parents=True, exist_ok=True)

        # Temp file must live in the same directory for an atomic rename
        fd, tmp_path = tempfile.mkstemp(
            dir=str(dir_path),
            prefix=".tmp_",
            suffix=".json"
        )

        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(data, f, indent=2, default=str)
                f.flush()
                os.fsync(f.fileno())

            os.replace(tmp_path, str(filepath))

        except OSError as e:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise ConfigurationError(
                f"Failed to write {filepath}: {e}",
                context={"filepath": str(filepath)}
            )

    def _read_json(self, filepath: Path) -> Dict[str, Any]:
        """Read and parse JSON file."""
        try:
            with open(filepath, 'r') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"Failed to read {filepath}: {e}",
                context={"filepath": str(filepath)}
            )

    def _load(self, namespace: str) -> List[DeploymentRevision]:
        filepath = self._namespace_file(namespace)
        if not filepath.exists():
            return []
        data = self._read_json(filepath)
        return [DeploymentRevision(**item) for item in data["revisions"]]

    def _save(self, namespace: str, revisions: List[DeploymentRevision]) -> None:
        data = {"namespace": namespace, "revisions": [r.model_dump(mode='json') for r in revisions]}
        self._atomic_write_json(self._namespace_file(namespace), data)

    def _recover_interrupted(self) -> None:
        for filepath in self._namespace_files():
            namespace = filepath.stem
            revisions = self._load(namespace)
            stale = [r for r in revisions if r.is_pending]
            if not stale:
                continue
            for revision in stale:
                revision.status = RevisionStatus.FAILED
                revision.error = "interrupted before completion"
                revision.completed_at = datetime.now(timezone.utc)
            self._save(namespace, revisions)
            logger.warning(
                "interrupted_revisions_failed",
                namespace=namespace,
                revision_ids=[r.revision_id for r in stale]
            )

    def begin(
        self,
        spec: DeploymentSpec,
        artifact: BuildArtifact,
        rollback_of: Optional[str] = None
    ) -> DeploymentRevision:
        """
        Record a new pending revision for spec.namespace.

        Raises:
            ConcurrentDeploymentError: If the namespace already has a pending revision
        """
        namespace = spec.namespace
        with self._lock:
            revisions = self._load(namespace)
            pending = [r for r in revisions if r.is_pending]
            if pending:
                raise ConcurrentDeploymentError(
                    f"Namespace {namespace} already has a pending revision",
                    context={"namespace": namespace, "pending": pending[0].revision_id}
                )

            sequence = max((r.sequence for r in revisions), default=0) + 1
            revision = DeploymentRevision(
                revision_id=f"rev-{namespace}-{sequence}",
                namespace=namespace,
                sequence=sequence,
                spec=spec,
                artifact=artifact,
                status=RevisionStatus.PENDING,
                created_at=datetime.now(timezone.utc),
                rollback_of=rollback_of,
            )
            revisions.append(revision)
            self._save(namespace, revisions)

        logger.info(
            "revision_created",
            revision_id=revision.revision_id,
            namespace=namespace,
            image=artifact.reference
        )
        return revision

    def complete(
        self,
        revision: DeploymentRevision,
        status: RevisionStatus,
        endpoint: Optional[str] = None,
        healthcheck: Optional[HealthCheckResult] = None,
        error: Optional[str] = None
    ) -> DeploymentRevision:
        """
        Move a pending revision to healthy or failed.

        Returns:
            The updated revision
        """
        if status == RevisionStatus.PENDING:
            raise ConfigurationError(
                "Revisions can only be completed as healthy or failed",
                context={"revision_id": revision.revision_id}
            )

        with self._lock:
            revisions = self._load(revision.namespace)
            for index, stored in enumerate(revisions):
                if stored.revision_id == revision.revision_id:
                    break
            else:
                raise ConfigurationError(
                    f"Revision {revision.revision_id} not found",
                    context={"revision_id": revision.revision_id}
                )

            updated = stored.model_copy(update={
                "status": status,
                "endpoint": endpoint,
                "healthcheck": healthcheck,
                "error": error,
                "completed_at": datetime.now(timezone.utc),
            })
            revisions[index] = updated
            self._save(revision.namespace, revisions)

        logger.info(
            f"revision_marked_{status.value}",
            revision_id=updated.revision_id,
            namespace=updated.namespace,
            error=error
        )
        return updated

    def history(self, namespace: str) -> List[DeploymentRevision]:
        """All revisions of a namespace, oldest first."""
        with self._lock:
            return sorted(self._load(namespace), key=lambda r: r.sequence)

    def pending(self, namespace: str) -> Optional[DeploymentRevision]:
        for revision in self.history(namespace):
            if revision.is_pending:
                return revision
        return None

    def latest_healthy(
        self,
        namespace: str,
        exclude: Optional[str] = None
    ) -> Optional[DeploymentRevision]:
        """
        Find the most recent healthy revision of a namespace.

        Args:
            namespace: Namespace to search
            exclude: Optional revision ID to skip

        Returns:
            Latest healthy DeploymentRevision or None
        """
        for revision in reversed(self.history(namespace)):
            if revision.status == RevisionStatus.HEALTHY and revision.revision_id != exclude:
                return revision
        return None

    def get(self, namespace: str, revision_id: str) -> Optional[DeploymentRevision]:
        for revision in self.history(namespace):
            if revision.revision_id == revision_id:
                return revision
        logger.warning("revision_not_found", namespace=namespace, revision_id=revision_id)
        return None

    def namespaces(self) -> List[str]:
        return [p.stem for p in self._namespace_files()]
