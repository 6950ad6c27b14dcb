"""
Explicit boto3 client handles, injected into each resource manager.
"""

from dataclasses import dataclass
from typing import Any, Optional

import boto3

from ..config import Config


@dataclass
class AwsClients:
    """The three AWS service clients an environment touches."""
    ec2: Any
    ecs: Any
    route53: Any


def make_clients(config: Config, session: Optional[boto3.session.Session] = None) -> AwsClients:
    """
    Build AWS clients for the configured profile and region.

    Args:
        config: Clusternator configuration
        session: Optional pre-built boto3 session

    Returns:
        AwsClients: Client handles
    """
    if session is None:
        session = boto3.session.Session(profile_name=config.profile, region_name=config.region)

    return AwsClients(
        ec2=session.client("ec2"),
        ecs=session.client("ecs"),
        route53=session.client("route53"),
    )
