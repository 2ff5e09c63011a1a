"""
Integration tests for StackDeployer against moto CloudFormation.
"""

import pytest

from cdk_deployer.deploy.stack_deployer import StackDeployer


def bucket_template(*logical_ids):
    return {"Resources": {logical_id: {"Type": "AWS::S3::Bucket"} for logical_id in logical_ids}}


@pytest.fixture
def deployer(aws_clients, aws_environment):
    return StackDeployer(aws_clients, aws_environment)


class TestStackDeployerMoto:
    """Create, update and destroy a stack end to end."""

    def test_create_update_destroy(self, deployer, make_stack):
        created = deployer.deploy(make_stack("Storage", resources=("Data",), template=bucket_template("Data")))
        assert created["StackStatus"] == "CREATE_COMPLETE"

        updated = deployer.deploy(make_stack("Storage", resources=("Data", "Logs"),
                                             template=bucket_template("Data", "Logs")))
        assert updated["StackStatus"] == "UPDATE_COMPLETE"
        assert updated["StackId"] == created["StackId"]

        destroyed = deployer.destroy(make_stack("Storage"))
        assert destroyed["StackStatus"] == "DELETE_COMPLETE"
        assert deployer.destroy(make_stack("Storage")) is None

    def test_tags_applied(self, deployer, make_stack):
        stack = deployer.deploy(make_stack("Tagged", resources=("Data",), template=bucket_template("Data"),
                                           tags=(("team", "platform"),)))

        assert {"Key": "team", "Value": "platform"} in stack["Tags"]
