import boto3
import pytest
from moto import mock_aws

from cdk_deployer.aws.clients import AwsClientProvider
from cdk_deployer.aws.environment import EnvironmentResolver

REGION = "eu-central-1"


@pytest.fixture(scope="function")
def mocked_aws():
    """Run the test inside moto's mock_aws (credentials come from the root conftest)."""
    with mock_aws(config={"core": {"mock_credentials": False}}):
        yield


@pytest.fixture
def aws_resolver(mocked_aws):
    return EnvironmentResolver()


@pytest.fixture
def aws_clients(mocked_aws):
    return AwsClientProvider()


@pytest.fixture
def aws_environment(aws_resolver):
    """The default environment as resolved against moto's STS."""
    return aws_resolver.resolve("aws://unknown-account/unknown-region")


@pytest.fixture
def s3_bucket(mocked_aws):
    s3 = boto3.client("s3", region_name=REGION)
    s3.create_bucket(Bucket="cdk-assets", CreateBucketConfiguration={"LocationConstraint": REGION})
    return s3
