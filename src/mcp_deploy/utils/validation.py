"""
Input validation and sanitization utilities.

Validates trigger inputs before they reach Docker or the registry.
"""
import re  # Expresiones regulares para validación de patrones

from ..exceptions import ValidationError  # Excepción personalizada para errores de validación
from .logging import get_logger  # Logger estructurado

logger = get_logger(__name__)


def validate_git_ref(ref: str) -> str:
    """
    Validate a Git ref (refs/heads/main, refs/pull/42/merge, main, v1.0.0).

    Raises:
        ValidationError: If the ref contains unsafe characters
    """
    pattern = r'^[a-zA-Z0-9._\-/]+$'

    if not re.match(pattern, ref):
        raise ValidationError(
            f"Invalid git ref: {ref}",
            context={"ref": ref, "pattern": pattern}
        )

    # Prevent path traversal
    if '..' in ref:
        raise ValidationError(
            "Git ref cannot contain '..'",
            context={"ref": ref}
        )

    return ref


def validate_commit_sha(sha: str) -> str:
    """
    Validate a (possibly abbreviated) hexadecimal commit SHA.

    Raises:
        ValidationError: If the SHA is not 4-40 hex characters
    """
    if not re.match(r'^[0-9a-fA-F]{4,40}$', sha):
        raise ValidationError(
            f"Invalid commit SHA: {sha}",
            context={"sha": sha}
        )
    return sha.lower()


def validate_app_name(name: str) -> str:
    """
    Validate an application / image name component.

    Raises:
        ValidationError: If name is not a lowercase DNS-style label
    """
    pattern = r'^[a-z0-9]([a-z0-9\-]*[a-z0-9])?$'

    if not re.match(pattern, name):
        raise ValidationError(
            f"Invalid app name: {name}",
            context={"name": name}
        )

    if len(name) > 63:
        raise ValidationError(
            "App name too long (max 63 characters)",
            context={"name": name, "length": len(name)}
        )

    return name


def validate_image_tag(tag: str) -> str:
    """
    Validate a Docker image tag (the part after ':').

    Raises:
        ValidationError: If the tag is not a valid Docker tag
    """
    if not re.match(r'^[a-zA-Z0-9_][a-zA-Z0-9._\-]{0,127}$', tag):
        raise ValidationError(
            f"Invalid image tag: {tag}",
            context={"tag": tag}
        )
    return tag


def validate_image_reference(reference: str) -> tuple[str, str]:
    """
    Split and validate an image reference of the form repository:tag.

    Returns:
        Tuple of (repository, tag)

    Raises:
        ValidationError: If the reference is malformed
    """
    # The last ':' after the last '/' separates the tag (registry hosts may carry ports)
    slash = reference.rfind('/')
    colon = reference.rfind(':')
    if colon <= slash:
        raise ValidationError(
            f"Image reference must include a tag: {reference}",
            context={"reference": reference}
        )

    repository, tag = reference[:colon], reference[colon + 1:]

    if not re.match(r'^[a-z0-9][a-z0-9._\-/:]*$', repository):
        raise ValidationError(
            f"Invalid image repository: {repository}",
            context={"repository": repository}
        )

    return repository, validate_image_tag(tag)


def validate_repository_slug(repository: str) -> str:
    """
    Validate a source repository identifier (owner/name or a bare name).

    Raises:
        ValidationError: If the identifier contains unsafe characters
    """
    if not re.match(r'^[A-Za-z0-9._\-]+(/[A-Za-z0-9._\-]+)?$', repository):
        raise ValidationError(
            f"Invalid repository: {repository}",
            context={"repository": repository}
        )
    return repository


def validate_revision_id(revision_id: str) -> str:
    """
    Validate revision ID format.

    Raises:
        ValidationError: If revision ID is invalid
    """
    # Expected format: rev-<namespace>-<sequence>
    pattern = r'^rev-[a-z0-9\-]+-\d+$'

    if not re.match(pattern, revision_id):
        raise ValidationError(
            f"Invalid revision ID format: {revision_id}",
            context={"revision_id": revision_id, "expected_format": "rev-<namespace>-<n>"}
        )

    return revision_id
