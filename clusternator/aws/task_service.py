"""
ECS task definitions and services built from an application definition.
"""

import logging
from typing import Any, Dict, List, Mapping

from ..errors import PreconditionError, RemoteError
from .common import call, paginate

logger = logging.getLogger(__name__)

DEFAULT_DESIRED_COUNT = 1


class TaskServiceManager:
    """Runs an application definition as ECS services on a cluster."""

    def __init__(self, ecs: Any):
        self.ecs = ecs

    def register_task_definition(self, family: str, app_def: Mapping[str, Any]) -> str:
        result = call(self.ecs, "register_task_definition",
                      family=family, containerDefinitions=list(app_def["containers"]))
        return result["taskDefinition"]["taskDefinitionArn"]

    def create(self, cluster_name: str, service_name: str, app_def: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Register the app's containers as a task definition and start a service.

        Args:
            cluster_name: Target cluster
            service_name: Name for the service and task definition family
            app_def: Application definition; its ``containers`` are passed to
                ECS as-is

        Returns:
            The created service description
        """
        if not app_def or not app_def.get("containers"):
            raise PreconditionError(f"Application definition for {service_name} has no containers")

        task_definition = self.register_task_definition(service_name, app_def)
        result = call(self.ecs, "create_service",
                      cluster=cluster_name,
                      serviceName=service_name,
                      taskDefinition=task_definition,
                      desiredCount=app_def.get("desiredCount", DEFAULT_DESIRED_COUNT))

        service = result["service"]
        logger.info(f"Initialized service {service['serviceName']} on {cluster_name}")
        return service

    def list_services(self, cluster_arn: str) -> List[str]:
        return paginate(self.ecs, "list_services", "serviceArns", cluster=cluster_arn)

    def _remove_service(self, cluster_arn: str, service_arn: str) -> Dict[str, Any]:
        call(self.ecs, "update_service", cluster=cluster_arn, service=service_arn, desiredCount=0)
        service = call(self.ecs, "delete_service", cluster=cluster_arn, service=service_arn)["service"]

        task_definition = service.get("taskDefinition")
        if task_definition:
            try:
                call(self.ecs, "deregister_task_definition", taskDefinition=task_definition)
            except RemoteError as e:
                logger.warning(f"Could not deregister task definition {task_definition}: {e}")

        return service

    def destroy(self, cluster_arn: str, wait: bool = False) -> List[Dict[str, str]]:
        """
        Remove every service running on a cluster.

        A failure removing one service is logged; the rest are still tried.

        Args:
            cluster_arn: Cluster ARN or name
            wait: Block until the removed services are inactive

        Returns:
            ``{"serviceName": ...}`` for each removed service
        """
        removed = []
        removed_arns = []
        for service_arn in self.list_services(cluster_arn):
            try:
                service = self._remove_service(cluster_arn, service_arn)
            except RemoteError as e:
                logger.warning(f"Failed to remove service {service_arn} from {cluster_arn}: {e}")
                continue
            removed.append({"serviceName": service["serviceName"]})
            removed_arns.append(service_arn)

        logger.info(f"Deleted services {[s['serviceName'] for s in removed]} from {cluster_arn}")

        if wait and removed_arns:
            waiter = self.ecs.get_waiter("services_inactive")
            # DescribeServices accepts at most 10 services per request
            for start in range(0, len(removed_arns), 10):
                call(waiter, "wait", cluster=cluster_arn, services=removed_arns[start:start + 10])

        return removed
