"""
Subnet lookup for the configured VPC.
"""

import logging
from typing import Any, Dict, List, Optional

from ..errors import PreconditionError
from .common import describe_ec2, vpc_filter

logger = logging.getLogger(__name__)


class SubnetManager:
    """Finds subnets that environments in a VPC can attach to."""

    def __init__(self, ec2: Any, vpc_id: str):
        self.ec2 = ec2
        self.vpc_id = vpc_id

    def describe(self) -> List[Dict[str, Any]]:
        """Available subnets in the VPC."""
        return describe_ec2(self.ec2, "describe_subnets", "Subnets", [
            vpc_filter(self.vpc_id),
            {"Name": "state", "Values": ["available"]},
        ])

    def find_available(self, key_label: Optional[str] = None) -> str:
        """
        Pick the subnet a new environment should use.

        Args:
            key_label: Environment description for the error message

        Returns:
            str: Subnet id

        Raises:
            PreconditionError: If the VPC has no available subnet
        """
        subnets = self.describe()
        if not subnets:
            target = f" for {key_label}" if key_label else ""
            raise PreconditionError(f"No subnet found in VPC {self.vpc_id}{target}")

        subnet_id = subnets[0]["SubnetId"]
        logger.debug(f"Using subnet {subnet_id} of {len(subnets)} in {self.vpc_id}")
        return subnet_id
