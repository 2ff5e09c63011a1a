"""
Route 53 hosted zone lookup.

Query:
    domainName: Zone domain; a trailing dot is added when absent
    privateZone: Whether the zone must be private (default False)
    vpcId: Optional VPC the private zone must be associated with

Exactly one zone must match; the result is ``{"Id": ..., "Name": ...}``.
"""

from typing import Any, Dict, List

from .base import BaseContextProviderMapper


def normalize_domain_name(domain_name: str) -> str:
    return domain_name if domain_name.endswith(".") else f"{domain_name}."


class HostedZoneContextProviderMapper(BaseContextProviderMapper):

    provider_kind = "hosted-zone"

    def _lookup(self, query: Dict[str, Any]) -> Dict[str, str]:
        if not query.get("domainName"):
            raise self._fail("The hosted zone context query has no domainName", query)

        domain_name = normalize_domain_name(query["domainName"])
        private = bool(query.get("privateZone", False))
        vpc_id = query.get("vpcId")

        route53 = self._client("route53", query)
        response = route53.list_hosted_zones_by_name(DNSName=domain_name)

        matches: List[Dict[str, Any]] = []
        for zone in response.get("HostedZones", []):
            if zone["Name"] != domain_name:
                continue
            if bool(zone.get("Config", {}).get("PrivateZone", False)) != private:
                continue
            if vpc_id is not None and not self._is_associated(route53, zone["Id"], vpc_id):
                continue
            matches.append(zone)

        if len(matches) != 1:
            raise self._fail(
                f"Found {len(matches)} hosted zones matching '{domain_name}' "
                f"(private={private}, vpcId={vpc_id}), however exactly 1 is required",
                query
            )

        return {"Id": matches[0]["Id"], "Name": matches[0]["Name"]}

    @staticmethod
    def _is_associated(route53, zone_id: str, vpc_id: str) -> bool:
        vpcs = route53.get_hosted_zone(Id=zone_id).get("VPCs", [])
        return any(vpc.get("VPCId") == vpc_id for vpc in vpcs)
