"""
Pure naming rules: namespace from ref, app name from repository, image tag
from trigger.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..models.pipeline import TriggerInputs, TriggerType
from ..utils.validation import validate_app_name, validate_image_tag

SHORT_SHA_LENGTH = 7


class Namespace(str, Enum):
    PRODUCTION = "production"
    STAGING = "staging"
    DEVELOPMENT = "development"


BRANCH_NAMESPACES = {
    "main": Namespace.PRODUCTION,
    "develop": Namespace.STAGING,
}


def branch_from_ref(ref: str) -> Optional[str]:
    """Branch name for refs/heads/<branch>; None for any other ref."""
    prefix = "refs/heads/"
    if ref.startswith(prefix):
        return ref[len(prefix):]
    return None


def derive_namespace(ref: str) -> Namespace:
    """main -> production, develop -> staging, anything else -> development."""
    return BRANCH_NAMESPACES.get(branch_from_ref(ref), Namespace.DEVELOPMENT)


def resolve_namespace(ref: str, override: Optional[str] = None) -> str:
    """Explicit namespace input wins over ref-based derivation."""
    if override:
        return override
    return derive_namespace(ref).value


def derive_app_name(repository: str) -> str:
    """
    Image name from a repository identifier.

    owner/My_Repo.git -> my-repo
    """
    name = repository.rstrip('/').split('/')[-1]
    if name.endswith('.git'):
        name = name[:-len('.git')]
    name = re.sub(r'[^a-z0-9-]', '-', name.lower()).strip('-')
    return validate_app_name(name)


def derive_tag(trigger_type: TriggerType, sha: str, pr_number: Optional[int] = None) -> str:
    """
    Image tag for a build.

    Pull requests get pr-<number>-<sha>; branch and manual builds get the
    short SHA.
    """
    if trigger_type == TriggerType.PULL_REQUEST:
        return validate_image_tag(f"pr-{pr_number}-{sha}")
    return validate_image_tag(sha[:SHORT_SHA_LENGTH])


@dataclass(frozen=True)
class DeploymentTarget:
    """Where and under which name a trigger is built and deployed."""
    app_name: str
    tag: str
    namespace: str
    environment: str


def resolve_target(trigger: TriggerInputs) -> DeploymentTarget:
    """Apply manual overrides on top of the derived names."""
    app_name = validate_app_name(trigger.app_name) if trigger.app_name else derive_app_name(trigger.repository)
    if trigger.image_tag:
        tag = validate_image_tag(trigger.image_tag)
    else:
        tag = derive_tag(trigger.trigger_type, trigger.sha, trigger.pr_number)
    namespace = resolve_namespace(trigger.ref, trigger.namespace)
    return DeploymentTarget(
        app_name=app_name,
        tag=tag,
        namespace=namespace,
        environment=trigger.environment or namespace,
    )
