from typing import Any, Dict, List

from .base import BaseContextProviderMapper


class AvailabilityZonesContextProviderMapper(BaseContextProviderMapper):
    """Names of the availability zones in state ``available``, in the order EC2 lists them."""

    provider_kind = "availability-zones"

    def _lookup(self, query: Dict[str, Any]) -> List[str]:
        ec2 = self._client("ec2", query)
        zones = ec2.describe_availability_zones()["AvailabilityZones"]
        return [zone["ZoneName"] for zone in zones if zone.get("State") == "available"]
