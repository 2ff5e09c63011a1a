"""
Unit tests for the context provider mappers, with mocked boto3 clients.
"""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from cdk_deployer.assembly.models import MissingContext
from cdk_deployer.context import create_context_providers
from cdk_deployer.context.ami import AmiContextProviderMapper
from cdk_deployer.context.availability_zones import AvailabilityZonesContextProviderMapper
from cdk_deployer.context.hosted_zone import HostedZoneContextProviderMapper, normalize_domain_name
from cdk_deployer.context.ssm import SsmContextProviderMapper
from cdk_deployer.context.synthesizer import resolve_missing_context
from cdk_deployer.core.exceptions import ContextResolutionError

QUERY = {"account": "123456789012", "region": "eu-central-1"}


def client_error(code, operation="Operation"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class TestRegistryFactory:

    def test_all_provider_kinds_registered(self, client_provider, resolver):
        registry = create_context_providers(client_provider, resolver)

        assert registry.list_providers() == ["ami", "availability-zones", "hosted-zone", "ssm", "vpc-provider"]


class TestAvailabilityZones:

    def test_available_zones_only(self, client_provider, resolver):
        ec2 = client_provider.get_client("ec2", resolver.resolve.return_value)
        ec2.describe_availability_zones.return_value = {"AvailabilityZones": [
            {"ZoneName": "eu-central-1a", "State": "available"},
            {"ZoneName": "eu-central-1b", "State": "impaired"},
            {"ZoneName": "eu-central-1c", "State": "available"},
        ]}
        mapper = AvailabilityZonesContextProviderMapper(client_provider, resolver)

        assert mapper.get_context_value(QUERY) == ["eu-central-1a", "eu-central-1c"]
        resolver.resolve.assert_called_with("aws://123456789012/eu-central-1")

    def test_sdk_error_becomes_context_error(self, client_provider, resolver):
        ec2 = client_provider.get_client("ec2", resolver.resolve.return_value)
        ec2.describe_availability_zones.side_effect = client_error("UnauthorizedOperation")
        mapper = AvailabilityZonesContextProviderMapper(client_provider, resolver)

        with pytest.raises(ContextResolutionError) as exc_info:
            mapper.get_context_value(QUERY)

        assert exc_info.value.provider == "availability-zones"
        assert isinstance(exc_info.value.original_error, ClientError)

    def test_sdk_error_names_context_key(self, client_provider, resolver):
        ec2 = client_provider.get_client("ec2", resolver.resolve.return_value)
        ec2.describe_availability_zones.side_effect = client_error("UnauthorizedOperation")
        registry = create_context_providers(client_provider, resolver)
        key = "availability-zones:account=123456789012:region=eu-central-1"

        with pytest.raises(ContextResolutionError) as exc_info:
            resolve_missing_context(registry, [MissingContext(key, "availability-zones", dict(QUERY))])

        assert f"key={key}" in str(exc_info.value)
        assert "UnauthorizedOperation" in str(exc_info.value)
        assert isinstance(exc_info.value.original_error, ClientError)


class TestSsm:

    def test_parameter_value(self, client_provider, resolver):
        ssm = client_provider.get_client("ssm", resolver.resolve.return_value)
        ssm.get_parameter.return_value = {"Parameter": {"Value": "ami-123"}}
        mapper = SsmContextProviderMapper(client_provider, resolver)

        assert mapper.get_context_value(dict(QUERY, parameterName="/base/ami")) == "ami-123"
        ssm.get_parameter.assert_called_once_with(Name="/base/ami")

    def test_parameter_not_found(self, client_provider, resolver):
        ssm = client_provider.get_client("ssm", resolver.resolve.return_value)
        ssm.get_parameter.side_effect = client_error("ParameterNotFound", "GetParameter")
        mapper = SsmContextProviderMapper(client_provider, resolver)

        with pytest.raises(ContextResolutionError) as exc_info:
            mapper.get_context_value(dict(QUERY, parameterName="/missing"))

        assert "SSM parameter not available: /missing" in str(exc_info.value)

    def test_parameter_name_required(self, client_provider, resolver):
        with pytest.raises(ContextResolutionError):
            SsmContextProviderMapper(client_provider, resolver).get_context_value(QUERY)


class TestHostedZone:
    """Test hosted zone lookups, which must match exactly one zone."""

    def zones(self, client_provider, resolver, zones):
        route53 = client_provider.get_client("route53", resolver.resolve.return_value)
        route53.list_hosted_zones_by_name.return_value = {"HostedZones": zones}
        return route53

    def test_single_public_zone(self, client_provider, resolver):
        route53 = self.zones(client_provider, resolver, [
            {"Id": "/hostedzone/Z1", "Name": "example.com.", "Config": {"PrivateZone": False}},
            {"Id": "/hostedzone/Z2", "Name": "sub.example.com.", "Config": {"PrivateZone": False}},
        ])
        mapper = HostedZoneContextProviderMapper(client_provider, resolver)

        value = mapper.get_context_value(dict(QUERY, domainName="example.com"))

        assert value == {"Id": "/hostedzone/Z1", "Name": "example.com."}
        route53.list_hosted_zones_by_name.assert_called_once_with(DNSName="example.com.")

    def test_ambiguous_zones_raise(self, client_provider, resolver):
        self.zones(client_provider, resolver, [
            {"Id": "/hostedzone/Z1", "Name": "example.com.", "Config": {"PrivateZone": False}},
            {"Id": "/hostedzone/Z2", "Name": "example.com.", "Config": {"PrivateZone": False}},
        ])
        mapper = HostedZoneContextProviderMapper(client_provider, resolver)

        with pytest.raises(ContextResolutionError) as exc_info:
            mapper.get_context_value(dict(QUERY, domainName="example.com"))

        assert "Found 2 hosted zones" in str(exc_info.value)
        assert "exactly 1 is required" in str(exc_info.value)

    def test_no_zone_raises(self, client_provider, resolver):
        self.zones(client_provider, resolver, [])

        with pytest.raises(ContextResolutionError) as exc_info:
            HostedZoneContextProviderMapper(client_provider, resolver).get_context_value(
                dict(QUERY, domainName="example.com")
            )

        assert "Found 0 hosted zones" in str(exc_info.value)

    def test_private_zone_filtered_by_vpc(self, client_provider, resolver):
        route53 = self.zones(client_provider, resolver, [
            {"Id": "/hostedzone/Z1", "Name": "internal.", "Config": {"PrivateZone": True}},
            {"Id": "/hostedzone/Z2", "Name": "internal.", "Config": {"PrivateZone": True}},
            {"Id": "/hostedzone/Z3", "Name": "internal.", "Config": {"PrivateZone": False}},
        ])
        route53.get_hosted_zone.side_effect = lambda Id: {
            "VPCs": [{"VPCId": "vpc-1"}] if Id == "/hostedzone/Z2" else [{"VPCId": "vpc-9"}]
        }
        mapper = HostedZoneContextProviderMapper(client_provider, resolver)

        value = mapper.get_context_value(dict(QUERY, domainName="internal", privateZone=True, vpcId="vpc-1"))

        assert value["Id"] == "/hostedzone/Z2"

    def test_normalize_domain_name(self):
        assert normalize_domain_name("example.com") == "example.com."
        assert normalize_domain_name("example.com.") == "example.com."


class TestAmi:

    def test_newest_image(self, client_provider, resolver):
        ec2 = client_provider.get_client("ec2", resolver.resolve.return_value)
        ec2.describe_images.return_value = {"Images": [
            {"ImageId": "ami-old", "CreationDate": "2023-01-01T00:00:00.000Z"},
            {"ImageId": "ami-new", "CreationDate": "2024-06-01T00:00:00.000Z"},
        ]}
        mapper = AmiContextProviderMapper(client_provider, resolver)

        value = mapper.get_context_value(dict(QUERY, owners=["amazon"], filters={"name": ["al2023-*"]}))

        assert value == "ami-new"
        ec2.describe_images.assert_called_once_with(
            Filters=[{"Name": "name", "Values": ["al2023-*"]}], Owners=["amazon"]
        )

    def test_no_image_raises(self, client_provider, resolver):
        ec2 = client_provider.get_client("ec2", resolver.resolve.return_value)
        ec2.describe_images.return_value = {"Images": []}

        with pytest.raises(ContextResolutionError):
            AmiContextProviderMapper(client_provider, resolver).get_context_value(dict(QUERY, filters={}))


class TestNoValue:

    def test_none_result_raises(self, client_provider, resolver):
        mapper = AvailabilityZonesContextProviderMapper(client_provider, resolver)
        mapper._lookup = MagicMock(return_value=None)

        with pytest.raises(ContextResolutionError) as exc_info:
            mapper.get_context_value(QUERY)

        assert "no value" in str(exc_info.value)
