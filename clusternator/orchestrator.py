"""
Environment lifecycle orchestration.

Each flow (create, update, destroy, describe) is an ordered list of steps run
by :func:`run_steps`. A strict step aborts the flow on failure; a best-effort
step logs the failure and the flow moves on. Remote calls are blocking boto3
calls, so each one runs on a worker thread and the only concurrency is the
explicit fan-out inside a :func:`parallel` step.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from .aws import (
    AwsClients,
    ClusterManager,
    ComputeInstanceManager,
    DNSRecordManager,
    InstanceConfig,
    RegistryAuth,
    SecurityGroupManager,
    SubnetManager,
    TaskServiceManager,
    make_clients,
)
from .config import Config, load_config
from .errors import NotFoundError, PreconditionError, RemoteError
from .tags import EnvironmentKey, from_aws_tags, key_from_tags

logger = logging.getLogger(__name__)

StepAction = Callable[[Dict[str, Any]], Awaitable[Any]]


class StepPolicy(str, Enum):
    STRICT = "strict"
    BEST_EFFORT = "best_effort"


@dataclass
class Step:
    """One named unit of a lifecycle flow."""
    name: str
    action: StepAction
    policy: StepPolicy = StepPolicy.STRICT


async def run_steps(flow: str, steps: List[Step]) -> Dict[str, Any]:
    """
    Run steps in order, feeding each the results gathered so far.

    Args:
        flow: Flow description used in log lines
        steps: Steps to run

    Returns:
        Mapping of step name to its result (None for failed best-effort steps)

    Raises:
        Exception: The first failure of a strict step, unchanged
    """
    context: Dict[str, Any] = {}

    for step in steps:
        logger.info(f"{flow}: {step.name}")
        try:
            context[step.name] = await step.action(context)
        except Exception as e:
            if step.policy is StepPolicy.STRICT:
                logger.error(f"{flow}: {step.name} failed: {e}")
                raise
            logger.warning(f"{flow}: {step.name} failed, continuing: {e}")
            context[step.name] = None

    return context


def parallel(**actions: StepAction) -> StepAction:
    """Combine actions into one that runs them concurrently and waits for all."""
    async def run(context: Dict[str, Any]) -> Dict[str, Any]:
        names = list(actions)
        results = await asyncio.gather(*(actions[name](context) for name in names))
        return dict(zip(names, results))
    return run


async def _remote(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    return await asyncio.to_thread(fn, *args, **kwargs)


class Orchestrator:
    """
    Creates, updates, destroys and describes environments.

    Resource managers are injected; :meth:`from_config` builds them from
    configuration and boto3 clients.
    """

    def __init__(self,
                 subnets: SubnetManager,
                 security_groups: SecurityGroupManager,
                 instances: ComputeInstanceManager,
                 clusters: ClusterManager,
                 task_services: TaskServiceManager,
                 dns: DNSRecordManager,
                 registry_auth: Optional[RegistryAuth] = None):
        self.subnets = subnets
        self.security_groups = security_groups
        self.instances = instances
        self.clusters = clusters
        self.task_services = task_services
        self.dns = dns
        self.registry_auth = registry_auth

    @classmethod
    def from_config(cls, config: Optional[Config] = None,
                    clients: Optional[AwsClients] = None) -> "Orchestrator":
        config = config or load_config()
        config.require("vpc_id", "zone_id")
        clients = clients or make_clients(config)

        registry_auth = RegistryAuth(**config.registry_auth) if config.registry_auth else None

        return cls(
            subnets=SubnetManager(clients.ec2, config.vpc_id),
            security_groups=SecurityGroupManager(clients.ec2, config.vpc_id),
            instances=ComputeInstanceManager(clients.ec2, config),
            clusters=ClusterManager(clients.ecs),
            task_services=TaskServiceManager(clients.ecs),
            dns=DNSRecordManager(clients.route53, config.zone_id),
            registry_auth=registry_auth,
        )

    # -- create ---------------------------------------------------------------

    def _create_steps(self, key: EnvironmentKey, app_def: Mapping[str, Any]) -> List[Step]:
        cluster_name = key.cluster_name

        async def resolve_subnet(ctx):
            return await _remote(self.subnets.find_available, key.label)

        async def create_security_group(ctx):
            return await _remote(self.security_groups.create, key)

        async def create_cluster(ctx):
            return await _remote(self.clusters.create, cluster_name)

        async def create_instance(ctx):
            instance = InstanceConfig(
                cluster_name=cluster_name,
                key=key,
                security_group_id=ctx["network"]["security_group"],
                subnet_id=ctx["subnet"],
                auth=self.registry_auth,
            )
            instances = await _remote(self.instances.create_instance, instance)
            if not instances:
                raise RemoteError(f"EC2 launched no instance for {key.label}", operation="run_instances")
            return instances

        async def create_services(ctx):
            return await _remote(self.task_services.create, cluster_name, cluster_name, app_def)

        async def create_dns(ctx):
            instance_id = ctx["instance"][0]["InstanceId"]
            address = await _remote(self.instances.get_address, instance_id)
            return await _remote(self.dns.create, key, address)

        return [
            Step("subnet", resolve_subnet),
            Step("network", parallel(security_group=create_security_group, cluster=create_cluster)),
            Step("instance", create_instance),
            Step("task_service", create_services),
            Step("dns", create_dns),
        ]

    async def create(self, key: EnvironmentKey, app_def: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Provision every resource of an environment.

        The first failure aborts the remaining steps. Resources created before
        the failure are left in place.

        Args:
            key: Environment key
            app_def: Application definition for the task services

        Returns:
            Mapping of step name to result

        Raises:
            PreconditionError: Missing application definition or subnet
            ConflictError: A PR environment already exists
            RemoteError: AWS failed a request
        """
        if not app_def:
            raise PreconditionError(f"Create requires an application definition ({key.label})")

        logger.info(f"Creating environment {key.cluster_name} for {key.label}")
        return await run_steps(f"create {key.cluster_name}", self._create_steps(key, app_def))

    async def create_pr(self, project_id: str, pr: str, app_def: Mapping[str, Any]) -> Dict[str, Any]:
        return await self.create(EnvironmentKey.for_pr(project_id, pr), app_def)

    async def create_deployment(self, project_id: str, deployment: str,
                                app_def: Mapping[str, Any]) -> Dict[str, Any]:
        return await self.create(EnvironmentKey.for_deployment(project_id, deployment), app_def)

    # -- destroy --------------------------------------------------------------

    def _destroy_steps(self, key: EnvironmentKey) -> List[Step]:
        cluster_name = key.cluster_name

        async def destroy_dns(ctx):
            return await _remote(self.dns.destroy, key)

        async def deregister_containers(ctx):
            return await _remote(self.clusters.deregister_all, cluster_name)

        async def terminate_instances(ctx):
            return await _remote(self.instances.destroy, key, wait=True)

        async def destroy_services(ctx):
            cluster = await _remote(self.clusters.describe, cluster_name)
            return await _remote(self.task_services.destroy, cluster["clusterArn"])

        async def destroy_cluster(ctx):
            return await _remote(self.clusters.destroy, cluster_name)

        async def destroy_security_group(ctx):
            return await _remote(self.security_groups.destroy, key)

        best_effort = StepPolicy.BEST_EFFORT
        return [
            Step("dns", destroy_dns, best_effort),
            Step("deregister", deregister_containers, best_effort),
            Step("instance", terminate_instances, best_effort),
            Step("task_service", destroy_services, best_effort),
            Step("cluster", destroy_cluster, best_effort),
            Step("security_group", destroy_security_group, best_effort),
        ]

    async def destroy(self, key: EnvironmentKey) -> str:
        """
        Tear down an environment, best effort.

        Every step runs once even if earlier ones fail; failures only show up
        in the log.

        Returns:
            str: The environment's cluster name
        """
        logger.info(f"Destroying environment {key.cluster_name} for {key.label}")
        await run_steps(f"destroy {key.cluster_name}", self._destroy_steps(key))
        return key.cluster_name

    async def destroy_pr(self, project_id: str, pr: str) -> str:
        return await self.destroy(EnvironmentKey.for_pr(project_id, pr))

    async def destroy_deployment(self, project_id: str, deployment: str) -> str:
        return await self.destroy(EnvironmentKey.for_deployment(project_id, deployment))

    # -- update ---------------------------------------------------------------

    def _update_steps(self, key: EnvironmentKey, app_def: Mapping[str, Any]) -> List[Step]:
        cluster_name = key.cluster_name

        async def find_cluster(ctx):
            return await _remote(self.clusters.describe, cluster_name)

        async def destroy_services(ctx):
            return await _remote(self.task_services.destroy, ctx["cluster"]["clusterArn"], wait=True)

        async def create_services(ctx):
            return await _remote(self.task_services.create, cluster_name, cluster_name, app_def)

        return [
            Step("cluster", find_cluster),
            Step("old_services", destroy_services),
            Step("task_service", create_services),
        ]

    async def update(self, key: EnvironmentKey, app_def: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Replace the services of a running environment.

        Network, compute and DNS resources are left untouched.

        Returns:
            The new service description

        Raises:
            NotFoundError: If the environment's cluster does not exist
        """
        if not app_def:
            raise PreconditionError(f"Update requires an application definition ({key.label})")

        logger.info(f"Updating {key.cluster_name} with app definition \"{app_def.get('name')}\"")
        context = await run_steps(f"update {key.cluster_name}", self._update_steps(key, app_def))
        return context["task_service"]

    async def update_pr(self, project_id: str, pr: str, app_def: Mapping[str, Any]) -> Dict[str, Any]:
        return await self.update(EnvironmentKey.for_pr(project_id, pr), app_def)

    async def update_deployment(self, project_id: str, deployment: str,
                                app_def: Mapping[str, Any]) -> Dict[str, Any]:
        return await self.update(EnvironmentKey.for_deployment(project_id, deployment), app_def)

    # -- describe -------------------------------------------------------------

    async def describe(self, key: EnvironmentKey) -> Dict[str, Any]:
        """
        Snapshot of an environment's tagged resources.

        Each lookup is independent; one that fails is reported as None.
        """
        cluster_name = key.cluster_name

        async def describe_cluster(ctx):
            try:
                return await _remote(self.clusters.describe, cluster_name)
            except NotFoundError:
                return None

        async def describe_services(ctx):
            if not ctx.get("cluster"):
                return []
            return await _remote(self.task_services.list_services, ctx["cluster"]["clusterArn"])

        async def describe_security_groups(ctx):
            groups = await _remote(self.security_groups.describe_key, key)
            return [g["GroupId"] for g in groups]

        async def describe_instances(ctx):
            instances = await _remote(self.instances.describe, key)
            return [{"InstanceId": i["InstanceId"], "State": i.get("State", {}).get("Name")}
                    for i in instances]

        async def describe_dns(ctx):
            return await _remote(self.dns.describe, key)

        best_effort = StepPolicy.BEST_EFFORT
        context = await run_steps(f"describe {cluster_name}", [
            Step("security_groups", describe_security_groups, best_effort),
            Step("instances", describe_instances, best_effort),
            Step("cluster", describe_cluster, best_effort),
            Step("services", describe_services, best_effort),
            Step("dns", describe_dns, best_effort),
        ])

        return {
            "project": key.project_id,
            "pr": key.pr,
            "deployment": key.deployment,
            "cluster_name": cluster_name,
            **context,
        }

    async def describe_pr(self, project_id: str, pr: str) -> Dict[str, Any]:
        return await self.describe(EnvironmentKey.for_pr(project_id, pr))

    async def describe_deployment(self, project_id: str, deployment: str) -> Dict[str, Any]:
        return await self.describe(EnvironmentKey.for_deployment(project_id, deployment))

    # -- list -----------------------------------------------------------------

    async def list_environments(self, project_id: str) -> List[EnvironmentKey]:
        """
        Environments of a project, recovered from its security group tags.

        Every environment owns one security group, so the group tags are
        enough to find them all.

        Args:
            project_id: Project id

        Returns:
            Environment keys, in the order their groups were listed
        """
        if not project_id:
            raise PreconditionError("Listing environments requires a project_id")

        groups = await _remote(self.security_groups.describe_project, project_id)

        keys: List[EnvironmentKey] = []
        for group in groups:
            key = key_from_tags(from_aws_tags(group.get("Tags")))
            if key is None:
                logger.warning(f"Security group {group.get('GroupId')} has no environment tags, skipping")
            elif key not in keys:
                keys.append(key)
        return keys
