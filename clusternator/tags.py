"""
Tagging utilities and environment keys.

The tag set written on every resource is the only durable state clusternator
has; lookups are always tag-filtered describe calls.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from .errors import PreconditionError
from .ids import generate_pr_subdomain, generate_rid, generate_subdomain

CLUSTERNATOR_TAG = "clusternator"
PROJECT_TAG = "project"
PR_TAG = "pr"
DEPLOYMENT_TAG = "deployment"


@dataclass(frozen=True)
class EnvironmentKey:
    """Identifies one environment: project plus either a PR or a deployment name."""
    project_id: str
    pr: Optional[str] = None
    deployment: Optional[str] = None

    def __post_init__(self):
        # empty strings count as unset
        object.__setattr__(self, "pr", self.pr or None)
        object.__setattr__(self, "deployment", self.deployment or None)
        if not self.project_id:
            raise PreconditionError("Environment requires a project_id")
        if (self.pr is None) == (self.deployment is None):
            raise PreconditionError(
                "Environment requires exactly one of pr, or deployment "
                f"(project: {self.project_id})"
            )

    @classmethod
    def for_pr(cls, project_id: str, pr: str) -> "EnvironmentKey":
        return cls(project_id=project_id, pr=str(pr) if pr else pr)

    @classmethod
    def for_deployment(cls, project_id: str, deployment: str) -> "EnvironmentKey":
        return cls(project_id=project_id, deployment=deployment)

    @property
    def is_pr(self) -> bool:
        return self.pr is not None

    @property
    def label(self) -> str:
        """Human readable key, used in log lines and error messages."""
        if self.is_pr:
            return f"project: {self.project_id} pr #{self.pr}"
        return f"project: {self.project_id} deployment: {self.deployment}"

    @property
    def cluster_name(self) -> str:
        if self.is_pr:
            return generate_rid({"pid": self.project_id, "pr": self.pr})
        return generate_rid({"pid": self.project_id, "deployment": self.deployment})

    @property
    def subdomain(self) -> str:
        if self.is_pr:
            return generate_pr_subdomain(self.project_id, self.pr)
        return generate_subdomain(self.project_id, self.deployment)


def base_tags(key: EnvironmentKey) -> Dict[str, str]:
    """
    Generate the tag set for an environment's resources.

    Args:
        key: Environment key

    Returns:
        Dictionary of tags to apply to resources
    """
    tags = {
        CLUSTERNATOR_TAG: "true",
        PROJECT_TAG: key.project_id,
    }

    if key.is_pr:
        tags[PR_TAG] = key.pr
    else:
        tags[DEPLOYMENT_TAG] = key.deployment

    return tags


def to_aws_tags(tags: Dict[str, str]) -> List[Dict[str, str]]:
    """Convert a tag dict into the AWS ``[{Key, Value}]`` shape."""
    return [{"Key": k, "Value": v} for k, v in tags.items()]


def from_aws_tags(aws_tags: Optional[List[Dict[str, str]]]) -> Dict[str, str]:
    """Convert AWS ``[{Key, Value}]`` tags into a dict."""
    return {tag["Key"]: tag["Value"] for tag in aws_tags or []}


def tag_filters(tags: Dict[str, str]) -> List[Dict[str, object]]:
    """EC2 describe filters matching every tag in ``tags``."""
    return [{"Name": f"tag:{k}", "Values": [v]} for k, v in tags.items()]


def project_filters(project_id: str) -> List[Dict[str, object]]:
    """Filters for every clusternator resource of a project."""
    return tag_filters({CLUSTERNATOR_TAG: "true", PROJECT_TAG: project_id})


def is_clusternator_resource(tags: Dict[str, str]) -> bool:
    """
    Check if a resource was created by clusternator based on its tags.

    Args:
        tags: Resource tags

    Returns:
        True if resource belongs to clusternator, False otherwise
    """
    return tags.get(CLUSTERNATOR_TAG) == "true"


def key_from_tags(tags: Dict[str, str]) -> Optional[EnvironmentKey]:
    """Recover the environment key from a resource's tags, if it has one."""
    if not is_clusternator_resource(tags) or not tags.get(PROJECT_TAG):
        return None
    try:
        return EnvironmentKey(
            project_id=tags[PROJECT_TAG],
            pr=tags.get(PR_TAG),
            deployment=tags.get(DEPLOYMENT_TAG),
        )
    except PreconditionError:
        return None
