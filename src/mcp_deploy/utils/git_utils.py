# Este archivo lee la metadata de un checkout local: repositorio, ref y SHA del commit.

"""
Git checkout inspection using GitPython.

Fills in repository, ref and commit SHA for runs started from a local
checkout instead of a CI event.
"""
import re  # Expresiones regulares para extraer owner/repo de la URL remota
from dataclasses import dataclass  # Crear clases de datos simples
from datetime import datetime  # Manejo de fechas y timestamps
from pathlib import Path  # Manejo moderno de rutas de archivos
from typing import Optional  # Type hints para valores opcionales

from git import Repo, GitCommandError  # GitPython - wrapper de comandos git
from git.exc import InvalidGitRepositoryError, NoSuchPathError

from ..exceptions import ValidationError  # Excepción personalizada
from .logging import get_logger  # Logger estructurado

logger = get_logger(__name__)


@dataclass
class SourceMetadata:
    """Metadata of the commit checked out in a build context."""
    full_sha: str  # SHA completo del commit (40 caracteres)
    short_sha: str  # SHA corto (7 caracteres)
    ref: str  # refs/heads/<rama> o "HEAD" si está detached
    repository: Optional[str]  # owner/name extraído del remote origin
    author: str
    message: str
    timestamp: datetime


def repository_slug_from_url(url: str) -> Optional[str]:
    """
    Extract owner/name from a Git remote URL.

    Handles https://host/owner/name(.git) and git@host:owner/name(.git).

    Returns:
        owner/name, or None when the URL has no recognizable path
    """
    match = re.search(r'[:/]([^/:]+)/([^/]+?)(?:\.git)?/?$', url)
    if not match:
        return None
    return f"{match.group(1)}/{match.group(2)}"


def inspect_checkout(path: Path) -> SourceMetadata:
    """
    Read commit metadata from a local Git checkout.

    Args:
        path: Directory inside a Git working tree

    Returns:
        SourceMetadata for HEAD

    Raises:
        ValidationError: If path is not a Git checkout or has no commits
    """
    try:
        repo = Repo(path, search_parent_directories=True)
    except (InvalidGitRepositoryError, NoSuchPathError) as e:
        raise ValidationError(
            f"Not a git checkout: {path}",
            context={"path": str(path), "error": str(e)}
        )

    try:
        commit = repo.head.commit
    except ValueError as e:
        raise ValidationError(
            f"Checkout has no commits: {path}",
            context={"path": str(path), "error": str(e)}
        )

    # Handle detached HEAD state (CI checkouts of PR merge refs and tags)
    try:
        ref = f"refs/heads/{repo.active_branch.name}"
    except TypeError:
        ref = "HEAD"

    repository = None
    try:
        if repo.remotes:
            repository = repository_slug_from_url(repo.remotes.origin.url)
    except (AttributeError, GitCommandError):
        logger.debug("origin_remote_unavailable", path=str(path))

    metadata = SourceMetadata(
        full_sha=commit.hexsha,
        short_sha=commit.hexsha[:7],
        ref=ref,
        repository=repository,
        author=commit.author.name,
        message=commit.message.strip(),
        timestamp=commit.committed_datetime
    )

    logger.info(
        "checkout_inspected",
        sha=metadata.short_sha,
        ref=metadata.ref,
        repository=metadata.repository
    )

    return metadata
