"""
EC2 container instances that join an ECS cluster on boot.
"""

import base64
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..config import Config
from ..errors import PreconditionError
from ..tags import EnvironmentKey, base_tags, tag_filters
from .common import call, describe_ec2, raise_not_found, tag_ec2

logger = logging.getLogger(__name__)

ECS_CONFIG_PATH = "/etc/ecs/ecs.config"
DOCKER_HUB_AUTH_URL = "https://index.docker.io/v1/user"
LIVE_INSTANCE_STATES = ["pending", "running", "stopping", "stopped"]


@dataclass
class RegistryAuth:
    """
    Container registry credentials for the ECS agent.

    Either ``cfg`` (a pre-built multi-registry JSON document) or the full
    username/password/email triple.
    """
    cfg: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    email: Optional[str] = None

    def validate(self) -> None:
        if self.cfg:
            return
        if not (self.username and self.password and self.email):
            raise PreconditionError("Auth should contain a username, password, and email")

    def engine_auth(self) -> Dict[str, str]:
        """ECS_ENGINE_AUTH_TYPE / ECS_ENGINE_AUTH_DATA values."""
        self.validate()
        if self.cfg:
            try:
                document = json.loads(self.cfg)
            except ValueError as e:
                raise PreconditionError(f"Registry auth cfg is not valid JSON: {e}") from e
            return {"type": "dockercfg", "data": json.dumps(document)}

        document = {DOCKER_HUB_AUTH_URL: {
            "username": self.username,
            "password": self.password,
            "email": self.email,
        }}
        return {"type": "docker", "data": json.dumps(document)}


@dataclass
class BootstrapConfig:
    cluster_name: str
    auth: Optional[RegistryAuth] = None


@dataclass
class InstanceConfig:
    """Everything needed to launch one container instance for an environment."""
    cluster_name: str
    key: Optional[EnvironmentKey] = None
    security_group_id: Optional[str] = None
    subnet_id: Optional[str] = None
    auth: Optional[RegistryAuth] = None
    api_config: Dict[str, Any] = field(default_factory=dict)


def render_user_data(bootstrap: BootstrapConfig) -> str:
    """
    Render the boot script that points the ECS agent at a cluster.

    Args:
        bootstrap: Cluster name and optional registry credentials

    Returns:
        str: Shell script

    Raises:
        PreconditionError: If the cluster name is missing or auth is partial
    """
    if not bootstrap.cluster_name:
        raise PreconditionError("Instance requires cluster name")

    lines = [
        "#!/bin/bash",
        f"echo ECS_CLUSTER={bootstrap.cluster_name} >> {ECS_CONFIG_PATH};",
    ]

    if bootstrap.auth is not None:
        engine_auth = bootstrap.auth.engine_auth()
        lines.append(f"echo ECS_ENGINE_AUTH_TYPE={engine_auth['type']} >> {ECS_CONFIG_PATH};")
        lines.append(f"echo ECS_ENGINE_AUTH_DATA={engine_auth['data']} >> {ECS_CONFIG_PATH};")

    return "\n".join(lines)


def encode_user_data(script: str) -> str:
    return base64.b64encode(script.encode("utf-8")).decode("ascii")


def default_instance_params(config: Config) -> Dict[str, Any]:
    """Launch template that caller-supplied ``api_config`` is overlaid onto."""
    params: Dict[str, Any] = {
        "ImageId": config.ami_id,
        "MaxCount": 1,
        "MinCount": 1,
        "DisableApiTermination": False,
        "IamInstanceProfile": {"Name": config.iam_instance_profile},
        "EbsOptimized": False,
        "InstanceInitiatedShutdownBehavior": "terminate",
        "InstanceType": config.instance_type,
        "Monitoring": {"Enabled": True},
        "Placement": {"Tenancy": "default"},
    }
    if config.key_name:
        params["KeyName"] = config.key_name
    params.update(config.instance_overrides)
    return params


class ComputeInstanceManager:
    """Launches, inspects and terminates environment container instances."""

    def __init__(self, ec2: Any, config: Optional[Config] = None):
        self.ec2 = ec2
        self.config = config or Config()

    def _launch_params(self, instance: InstanceConfig, user_data: str) -> Dict[str, Any]:
        params = default_instance_params(self.config)

        if instance.subnet_id or instance.security_group_id:
            interface: Dict[str, Any] = {
                "DeviceIndex": 0,
                "AssociatePublicIpAddress": True,
                "DeleteOnTermination": True,
            }
            if instance.subnet_id:
                interface["SubnetId"] = instance.subnet_id
            if instance.security_group_id:
                interface["Groups"] = [instance.security_group_id]
            params["NetworkInterfaces"] = [interface]

        params.update(instance.api_config)
        # one instance per environment running the bootstrap script, whatever the overrides say
        params["UserData"] = user_data
        params["MinCount"] = params["MaxCount"] = 1
        return params

    def create_instance(self, instance: InstanceConfig) -> List[Dict[str, Any]]:
        """
        Launch one container instance and tag it for its environment.

        Args:
            instance: Launch configuration

        Returns:
            List of instance descriptions returned by EC2

        Raises:
            PreconditionError: Missing cluster name or partial registry auth
        """
        if not instance.cluster_name:
            raise PreconditionError("Instance requires cluster name")

        script = render_user_data(BootstrapConfig(instance.cluster_name, instance.auth))
        params = self._launch_params(instance, encode_user_data(script))

        result = call(self.ec2, "run_instances", **params)
        instances = result.get("Instances", [])

        if instance.key is not None and instances:
            tag_ec2(self.ec2, [i["InstanceId"] for i in instances], base_tags(instance.key))

        ids = ", ".join(i["InstanceId"] for i in instances)
        logger.info(f"Launched instance(s) {ids} for cluster {instance.cluster_name}")
        return instances

    def check_status(self, instance_ids: List[str]) -> List[Dict[str, Any]]:
        """
        Current EC2 description of each instance.

        Raises:
            PreconditionError: If ``instance_ids`` is empty
        """
        if not instance_ids:
            raise PreconditionError("No instance IDs")

        reservations = call(self.ec2, "describe_instances", InstanceIds=list(instance_ids))
        return _flatten(reservations.get("Reservations", []))

    def describe(self, key: EnvironmentKey) -> List[Dict[str, Any]]:
        """Non-terminated instances tagged for ``key``."""
        reservations = describe_ec2(self.ec2, "describe_instances", "Reservations",
                                    tag_filters(base_tags(key)) + [
                                        {"Name": "instance-state-name", "Values": LIVE_INSTANCE_STATES},
                                    ])
        return _flatten(reservations)

    def get_address(self, instance_id: str) -> str:
        """
        Wait for an instance to run and return its public IP.

        Falls back to the private IP for instances without a public address.
        """
        waiter = self.ec2.get_waiter("instance_running")
        call(waiter, "wait", InstanceIds=[instance_id])

        instances = self.check_status([instance_id])
        if not instances:
            raise_not_found(instance_id, "instance")

        address = instances[0].get("PublicIpAddress") or instances[0].get("PrivateIpAddress")
        if not address:
            raise PreconditionError(f"Instance {instance_id} has no IP address")
        return address

    def destroy(self, key: EnvironmentKey, wait: bool = False) -> List[str]:
        """
        Terminate every instance of an environment.

        Args:
            key: Environment key
            wait: Block until EC2 reports the instances terminated

        Returns:
            List of terminated instance ids

        Raises:
            NotFoundError: If the environment has no live instances
        """
        instances = self.describe(key)
        if not instances:
            raise_not_found(key.label, "instance")

        instance_ids = [i["InstanceId"] for i in instances]
        call(self.ec2, "terminate_instances", InstanceIds=instance_ids)
        logger.info(f"Terminating instance(s) {', '.join(instance_ids)} for {key.label}")

        if wait:
            waiter = self.ec2.get_waiter("instance_terminated")
            call(waiter, "wait", InstanceIds=instance_ids)

        return instance_ids


def _flatten(reservations: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [i for r in reservations for i in r.get("Instances", [])]
