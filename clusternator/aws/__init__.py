"""
AWS resource managers. Each wraps one resource type behind an idempotent
describe/create/destroy contract scoped by environment tags.
"""

from .clients import AwsClients, make_clients
from .cluster import ClusterManager
from .ec2 import BootstrapConfig, ComputeInstanceManager, InstanceConfig, RegistryAuth, render_user_data
from .route53 import DNSRecordManager
from .security_group import SecurityGroupManager
from .subnet import SubnetManager
from .task_service import TaskServiceManager

__all__ = [
    "AwsClients",
    "make_clients",
    "ClusterManager",
    "BootstrapConfig",
    "ComputeInstanceManager",
    "InstanceConfig",
    "RegistryAuth",
    "render_user_data",
    "DNSRecordManager",
    "SecurityGroupManager",
    "SubnetManager",
    "TaskServiceManager",
]
