"""
ECS clusters and their registered container instances.
"""

import logging
from typing import Any, Dict, List

from ..errors import RemoteError
from .common import call, paginate, raise_not_found

logger = logging.getLogger(__name__)


class ClusterManager:
    """Wraps ECS cluster create/describe/destroy for one environment at a time."""

    def __init__(self, ecs: Any):
        self.ecs = ecs

    def create(self, cluster_name: str) -> Dict[str, Any]:
        result = call(self.ecs, "create_cluster", clusterName=cluster_name)
        logger.info(f"Created cluster {cluster_name}")
        return result["cluster"]

    def describe(self, cluster_name: str) -> Dict[str, Any]:
        """
        Describe an active cluster.

        Raises:
            NotFoundError: If the cluster does not exist or is inactive
        """
        result = call(self.ecs, "describe_clusters", clusters=[cluster_name])
        active = [c for c in result.get("clusters", []) if c.get("status") != "INACTIVE"]
        if not active:
            raise_not_found(f"cluster name {cluster_name}", "cluster")
        return active[0]

    def list_container_instances(self, cluster_name: str) -> List[str]:
        return paginate(self.ecs, "list_container_instances", "containerInstanceArns",
                        cluster=cluster_name)

    def deregister(self, cluster_name: str, container_instance_arn: str) -> Dict[str, Any]:
        result = call(self.ecs, "deregister_container_instance",
                      cluster=cluster_name, containerInstance=container_instance_arn, force=True)
        return result["containerInstance"]

    def deregister_all(self, cluster_name: str) -> List[Dict[str, Any]]:
        """
        Deregister every container instance from a cluster.

        A failed deregistration is logged and skipped; ECS drops the instance
        on its own once it terminates.

        Returns:
            Descriptions of the instances that were deregistered
        """
        deregistered = []
        for arn in self.list_container_instances(cluster_name):
            try:
                deregistered.append(self.deregister(cluster_name, arn))
            except RemoteError as e:
                logger.warning(f"Cluster {cluster_name}: deregistration of {arn} failed: {e}")
        return deregistered

    def destroy(self, cluster_name: str) -> List[Dict[str, Any]]:
        """
        Deregister remaining container instances, then delete the cluster.

        Returns:
            Descriptions of the instances that were deregistered
        """
        deregistered = self.deregister_all(cluster_name)
        call(self.ecs, "delete_cluster", cluster=cluster_name)
        logger.info(f"Deleted cluster {cluster_name}")
        return deregistered
