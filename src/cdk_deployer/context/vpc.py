"""
VPC lookup.

Query:
    filter: Mapping of EC2 filter name to value (e.g. {"tag:Name": "main"})

Exactly one VPC must match. Its subnets are grouped by type (public,
private, isolated) and the result describes every group symmetrically:
each group spans the same availability zones, and ids are ordered by group
name, then by availability zone.

Subnet type:
    1. The ``aws-cdk:subnet-type`` tag, if present
    2. Otherwise derived from the routing of the subnet's route table:
       a route to an internet gateway means public, a route to a NAT
       gateway or NAT instance means private, anything else is isolated

Subnet name:
    The ``aws-cdk:subnet-name`` tag, otherwise the type name.
"""

from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .base import BaseContextProviderMapper

SUBNET_TYPE_TAG = "aws-cdk:subnet-type"
SUBNET_NAME_TAG = "aws-cdk:subnet-name"

PUBLIC = "Public"
PRIVATE = "Private"
ISOLATED = "Isolated"

_OUTPUT_PREFIXES = {PUBLIC: "public", PRIVATE: "private", ISOLATED: "isolated"}


@dataclass
class _Subnet:
    subnet_id: str
    availability_zone: str
    route_table_id: Optional[str]
    type: str
    name: str


def _tags(resource: Dict[str, Any]) -> Dict[str, str]:
    return {tag["Key"]: tag["Value"] for tag in resource.get("Tags", [])}


def _route_table_for(subnet_id: str, route_tables: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """The explicitly associated route table, or else the main route table."""
    main = None
    for table in route_tables:
        for association in table.get("Associations", []):
            if association.get("SubnetId") == subnet_id:
                return table
            if association.get("Main"):
                main = table
    return main


def _type_from_routes(route_table: Optional[Dict[str, Any]]) -> str:
    routes = route_table.get("Routes", []) if route_table else []
    if any((route.get("GatewayId") or "").startswith("igw-") for route in routes):
        return PUBLIC
    if any(route.get("NatGatewayId") or route.get("InstanceId") for route in routes):
        return PRIVATE
    return ISOLATED


class VpcContextProviderMapper(BaseContextProviderMapper):

    provider_kind = "vpc-provider"

    def _lookup(self, query: Dict[str, Any]) -> Dict[str, Any]:
        ec2 = self._client("ec2", query)
        filters = [{"Name": name, "Values": [str(value)]} for name, value in (query.get("filter") or {}).items()]

        vpcs = ec2.describe_vpcs(Filters=filters).get("Vpcs", [])
        if len(vpcs) != 1:
            raise self._fail(
                f"Found {len(vpcs)} VPCs matching {query.get('filter')}, however exactly 1 is required", query
            )
        vpc = vpcs[0]
        vpc_filter = [{"Name": "vpc-id", "Values": [vpc["VpcId"]]}]

        route_tables = ec2.describe_route_tables(Filters=vpc_filter).get("RouteTables", [])
        subnets = [
            self._describe_subnet(subnet, route_tables)
            for subnet in ec2.describe_subnets(Filters=vpc_filter).get("Subnets", [])
        ]
        if not subnets:
            raise self._fail(f"The VPC {vpc['VpcId']} has no subnets", query)

        result: Dict[str, Any] = {
            "vpcId": vpc["VpcId"],
            "vpcCidrBlock": vpc["CidrBlock"],
        }
        availability_zones: Optional[List[str]] = None

        for subnet_type, prefix in _OUTPUT_PREFIXES.items():
            groups = self._group_by_name(s for s in subnets if s.type == subnet_type)
            if not groups:
                continue

            for name, members in groups.items():
                zones = [s.availability_zone for s in members]
                if availability_zones is None:
                    availability_zones = zones
                elif zones != availability_zones:
                    raise self._fail(
                        f"Subnet group '{name}' spans {zones}, expected {availability_zones}; "
                        "only symmetric VPCs are supported", query
                    )

            ordered = [s for members in groups.values() for s in members]
            result[f"{prefix}SubnetIds"] = [s.subnet_id for s in ordered]
            result[f"{prefix}SubnetNames"] = list(groups.keys())
            result[f"{prefix}SubnetRouteTableIds"] = [s.route_table_id for s in ordered]

        result["availabilityZones"] = availability_zones or []

        vpn_gateways = ec2.describe_vpn_gateways(Filters=[
            {"Name": "attachment.vpc-id", "Values": [vpc["VpcId"]]},
            {"Name": "attachment.state", "Values": ["attached"]},
            {"Name": "state", "Values": ["available"]},
        ]).get("VpnGateways", [])
        if vpn_gateways:
            result["vpnGatewayId"] = vpn_gateways[0]["VpnGatewayId"]

        return result

    def _describe_subnet(self, subnet: Dict[str, Any], route_tables: List[Dict[str, Any]]) -> _Subnet:
        tags = _tags(subnet)
        route_table = _route_table_for(subnet["SubnetId"], route_tables)

        subnet_type = tags.get(SUBNET_TYPE_TAG) or _type_from_routes(route_table)
        if subnet_type not in _OUTPUT_PREFIXES:
            raise self._fail(
                f"Subnet {subnet['SubnetId']} has an invalid {SUBNET_TYPE_TAG} tag: {subnet_type}", {}
            )

        return _Subnet(
            subnet_id=subnet["SubnetId"],
            availability_zone=subnet["AvailabilityZone"],
            route_table_id=route_table["RouteTableId"] if route_table else None,
            type=subnet_type,
            name=tags.get(SUBNET_NAME_TAG) or subnet_type,
        )

    @staticmethod
    def _group_by_name(subnets) -> 'OrderedDict[str, List[_Subnet]]':
        groups: 'OrderedDict[str, List[_Subnet]]' = OrderedDict()
        for subnet in sorted(subnets, key=lambda s: (s.name, s.availability_zone)):
            groups.setdefault(subnet.name, []).append(subnet)
        return groups
