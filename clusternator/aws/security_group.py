"""
EC2/VPC security groups, one per environment.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from ..errors import ConflictError, PreconditionError, RemoteError
from ..tags import CLUSTERNATOR_TAG, EnvironmentKey, base_tags, project_filters, tag_filters
from .common import call, describe_ec2, raise_not_found, tag_ec2, vpc_filter

logger = logging.getLogger(__name__)

DEFAULT_INGRESS = [{
    "IpProtocol": "tcp",
    "FromPort": 0,
    "ToPort": 65535,
    "IpRanges": [{"CidrIp": "0.0.0.0/0"}],
}]

DEFAULT_EGRESS = [{
    "IpProtocol": "tcp",
    "FromPort": 0,
    "ToPort": 65535,
    "IpRanges": [{"CidrIp": "0.0.0.0/0"}],
}]


class SecurityGroupManager:
    """
    Creates, finds and deletes clusternator security groups in one VPC.

    Existence is always re-checked with a tag-filtered describe call.
    """

    def __init__(self, ec2: Any, vpc_id: str):
        self.ec2 = ec2
        self.vpc_id = vpc_id

    def describe(self, filters: Optional[Sequence[Dict[str, Any]]] = None) -> List[Dict[str, Any]]:
        """Security groups in the VPC matching ``filters`` (all clusternator groups by default)."""
        if filters is None:
            filters = tag_filters({CLUSTERNATOR_TAG: "true"})
        return describe_ec2(self.ec2, "describe_security_groups", "SecurityGroups",
                            [vpc_filter(self.vpc_id)] + list(filters))

    def describe_project(self, project_id: str) -> List[Dict[str, Any]]:
        return self.describe(project_filters(project_id))

    def describe_key(self, key: EnvironmentKey) -> List[Dict[str, Any]]:
        return self.describe(tag_filters(base_tags(key)))

    def describe_pr(self, project_id: str, pr: str) -> List[Dict[str, Any]]:
        return self.describe_key(EnvironmentKey.for_pr(project_id, pr))

    def describe_deployment(self, project_id: str, deployment: str) -> List[Dict[str, Any]]:
        return self.describe_key(EnvironmentKey.for_deployment(project_id, deployment))

    def default_in_out_rules(self, group_id: str) -> str:
        """
        Attach the default ingress/egress rules to a group.

        Failures are logged and ignored; the group is usable either way.

        Args:
            group_id: Security group id

        Returns:
            str: The same group id
        """
        try:
            call(self.ec2, "authorize_security_group_ingress",
                 GroupId=group_id, IpPermissions=DEFAULT_INGRESS)
            call(self.ec2, "authorize_security_group_egress",
                 GroupId=group_id, IpPermissions=DEFAULT_EGRESS)
        except RemoteError as e:
            logger.warning(f"SecurityGroup: could not add default rules to {group_id}: {e}")
        return group_id

    def _create_group(self, key: EnvironmentKey) -> str:
        group_name = key.cluster_name
        if key.is_pr:
            description = f"Created by clusternator for {key.project_id}, PR: {key.pr}"
        else:
            description = (f"Created by clusternator for {key.project_id}, "
                           f"Deployment: {key.deployment}")

        result = call(self.ec2, "create_security_group",
                      GroupName=group_name, Description=description, VpcId=self.vpc_id)
        group_id = result["GroupId"]

        tag_ec2(self.ec2, [group_id], base_tags(key))
        self.default_in_out_rules(group_id)

        logger.info(f"Created security group {group_id} ({group_name}) for {key.label}")
        return group_id

    def create_pr(self, project_id: str, pr: str) -> str:
        """
        Create the security group for a pull request.

        Args:
            project_id: Project id
            pr: Pull request number

        Returns:
            str: New group id

        Raises:
            ConflictError: If a group for this project/PR already exists
        """
        if not project_id or not pr:
            raise PreconditionError("Create SecurityGroup requires a projectId, and pull request #")
        key = EnvironmentKey.for_pr(project_id, pr)

        if self.describe_key(key):
            raise ConflictError(f"SecurityGroup Exists For Project: {project_id} PR: {pr}")

        return self._create_group(key)

    def create_deployment(self, project_id: str, deployment: str) -> str:
        """
        Find or create the security group for a named deployment.

        Args:
            project_id: Project id
            deployment: Deployment name

        Returns:
            str: Existing or new group id
        """
        if not project_id or not deployment:
            raise PreconditionError("Create SecurityGroup requires a projectId, and a deployment label")
        key = EnvironmentKey.for_deployment(project_id, deployment)

        existing = self.describe_key(key)
        if existing:
            logger.info(f"Security group found for {key.label}")
            return existing[0]["GroupId"]

        return self._create_group(key)

    def create(self, key: EnvironmentKey) -> str:
        if key.is_pr:
            return self.create_pr(key.project_id, key.pr)
        return self.create_deployment(key.project_id, key.deployment)

    def destroy(self, key: EnvironmentKey) -> str:
        """
        Delete the environment's security group.

        Returns:
            str: Deleted group id

        Raises:
            NotFoundError: If no group carries the environment's tags
        """
        groups = self.describe_key(key)
        if not groups:
            raise_not_found(key.label, "security group")

        group_id = groups[0]["GroupId"]
        call(self.ec2, "delete_security_group", GroupId=group_id)
        logger.info(f"Deleted security group {group_id} for {key.label}")
        return group_id

    def destroy_pr(self, project_id: str, pr: str) -> str:
        if not project_id or not pr:
            raise PreconditionError("Destroy SecurityGroups requires a projectId, and a pull request #")
        return self.destroy(EnvironmentKey.for_pr(project_id, pr))

    def destroy_deployment(self, project_id: str, deployment: str) -> str:
        if not project_id or not deployment:
            raise PreconditionError("Destroy SecurityGroups requires a projectId, and a deployment label")
        return self.destroy(EnvironmentKey.for_deployment(project_id, deployment))
