"""
Route 53 A records that point an environment's subdomain at its instance.
"""

import logging
from typing import Any, Dict, Optional

from ..tags import EnvironmentKey
from .common import call, raise_not_found

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300


class DNSRecordManager:
    """Manages one A record per environment in a hosted zone."""

    def __init__(self, route53: Any, zone_id: str):
        self.route53 = route53
        self.zone_id = zone_id

    def zone_name(self) -> str:
        result = call(self.route53, "get_hosted_zone", Id=self.zone_id)
        return result["HostedZone"]["Name"]

    def record_name(self, key: EnvironmentKey) -> str:
        """
        Fully qualified record name, with the trailing dot Route 53 uses.

        Lowercased, since Route 53 stores and lists names in lowercase.
        """
        zone = self.zone_name()
        if not zone.endswith("."):
            zone += "."
        return f"{key.subdomain}.{zone}".lower()

    def _change(self, action: str, record_set: Dict[str, Any], comment: str) -> Dict[str, Any]:
        result = call(self.route53, "change_resource_record_sets",
                      HostedZoneId=self.zone_id,
                      ChangeBatch={
                          "Comment": comment,
                          "Changes": [{"Action": action, "ResourceRecordSet": record_set}],
                      })
        return result["ChangeInfo"]

    def create(self, key: EnvironmentKey, address: str) -> Dict[str, Any]:
        """
        Point the environment's subdomain at ``address``.

        Args:
            key: Environment key
            address: IPv4 address of the environment's instance

        Returns:
            The record set that was written
        """
        record_set = {
            "Name": self.record_name(key),
            "Type": "A",
            "TTL": DEFAULT_TTL,
            "ResourceRecords": [{"Value": address}],
        }
        self._change("UPSERT", record_set, f"Created by clusternator for {key.label}")
        logger.info(f"DNS record {record_set['Name']} -> {address}")
        return record_set

    def describe(self, key: EnvironmentKey) -> Optional[Dict[str, Any]]:
        name = self.record_name(key)
        result = call(self.route53, "list_resource_record_sets",
                      HostedZoneId=self.zone_id,
                      StartRecordName=name,
                      StartRecordType="A",
                      MaxItems="1")
        for record_set in result.get("ResourceRecordSets", []):
            if record_set["Name"].lower() == name and record_set["Type"] == "A":
                return record_set
        return None

    def destroy(self, key: EnvironmentKey) -> Dict[str, Any]:
        """
        Delete the environment's record.

        Raises:
            NotFoundError: If the zone has no record for the environment
        """
        record_set = self.describe(key)
        if record_set is None:
            raise_not_found(key.label, "DNS record")

        self._change("DELETE", record_set, f"Destroyed by clusternator for {key.label}")
        logger.info(f"Deleted DNS record {record_set['Name']}")
        return record_set
