import itertools
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from botocore.credentials import ReadOnlyCredentials
from botocore.exceptions import ClientError

from cdk_deployer.assembly.models import StackDefinition
from cdk_deployer.aws.environment import ResolvedEnvironment


@pytest.fixture(scope="function", autouse=True)
def mock_env_vars(monkeypatch):
    """Set mock environment variables to prevent accidental cloud calls."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "eu-central-1")
    for name in ("AWS_PROFILE", "AWS_ENDPOINT_URL", "CDK_NEW_BOOTSTRAP", "CDK_CONTEXT_JSON",
                 "CDK_DEFAULT_ACCOUNT", "CDK_DEFAULT_REGION", "CDK_OUTDIR"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def mock_sleep(monkeypatch):
    """Skip time.sleep calls to speed up tests."""
    monkeypatch.setattr("time.sleep", lambda x: None)


@pytest.fixture
def environment():
    """A resolved environment in eu-central-1."""
    return ResolvedEnvironment(
        partition="aws",
        region="eu-central-1",
        account="123456789012",
        credentials=ReadOnlyCredentials("testing", "testing", "testing"),
    )


@pytest.fixture
def make_stack():
    """Factory for StackDefinition with sensible defaults."""
    def _make(name="TestStack", resources=("Bucket",), **kwargs):
        kwargs.setdefault("environment", "aws://123456789012/eu-central-1")
        kwargs.setdefault("template_file", f"{name}.template.json")
        kwargs.setdefault("template", {"Resources": {r: {"Type": "AWS::S3::Bucket"} for r in resources}})
        return StackDefinition(stack_name=name, resources=tuple(resources), **kwargs)
    return _make


# ==========================================
# Fake CloudFormation
# ==========================================

class FakeCloudFormation:
    """
    In-memory CloudFormation client.

    Every operation first reports ``<OP>_IN_PROGRESS`` for ``pending_polls``
    describes, then the configured result status (``results``).

    Attributes:
        calls: (operation, stack name or id) in call order
        requests: keyword arguments of every create/update call
        results: status an operation ends in, e.g. {"create": "ROLLBACK_COMPLETE"}
        outputs: outputs a stack gets when created or updated, by stack name
        no_updates: update_stack raises "No updates are to be performed"
    """

    def __init__(self):
        self.stacks = []
        self.calls = []
        self.requests = []
        self.results = {}
        self.outputs = {}
        self.pending_polls = 1
        self.no_updates = False
        self._ids = itertools.count(1)
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _now(self):
        self._clock += timedelta(seconds=1)
        return self._clock

    def add_stack(self, name, status, outputs=None, parameters=None):
        stack = {
            "StackId": f"arn:aws:cloudformation:eu-central-1:123456789012:stack/{name}/{next(self._ids)}",
            "StackName": name,
            "StackStatus": status,
            "CreationTime": self._now(),
            "Outputs": [{"OutputKey": k, "OutputValue": v} for k, v in (outputs or {}).items()],
            "Parameters": [{"ParameterKey": k, "ParameterValue": v} for k, v in (parameters or {}).items()],
            "_pending": 0,
            "_target": status,
        }
        self.stacks.append(stack)
        return stack

    def _find(self, name_or_id):
        for stack in reversed(self.stacks):
            if stack["StackId"] == name_or_id:
                return stack
        for stack in reversed(self.stacks):
            if stack["StackName"] == name_or_id and stack["StackStatus"] != "DELETE_COMPLETE":
                return stack
        return None

    @staticmethod
    def _not_found(name, operation):
        return ClientError(
            {"Error": {"Code": "ValidationError", "Message": f"Stack with id {name} does not exist"}},
            operation
        )

    @staticmethod
    def _public(stack):
        return {k: v for k, v in stack.items() if not k.startswith("_")}

    def _start(self, stack, operation, default_result):
        stack["StackStatus"] = f"{operation.upper()}_IN_PROGRESS"
        stack["_target"] = self.results.get(operation, default_result)
        stack["_pending"] = self.pending_polls

    def describe_stacks(self, StackName):
        self.calls.append(("describe", StackName))
        stack = self._find(StackName)
        if stack is None:
            raise self._not_found(StackName, "DescribeStacks")
        if stack["_pending"] > 0:
            stack["_pending"] -= 1
        else:
            stack["StackStatus"] = stack["_target"]
        return {"Stacks": [self._public(stack)]}

    def create_stack(self, **kwargs):
        name = kwargs["StackName"]
        self.calls.append(("create", name))
        self.requests.append(kwargs)
        stack = self.add_stack(
            name, "CREATE_IN_PROGRESS", self.outputs.get(name),
            {p["ParameterKey"]: p.get("ParameterValue") for p in kwargs.get("Parameters", [])}
        )
        self._start(stack, "create", "CREATE_COMPLETE")
        return {"StackId": stack["StackId"]}

    def update_stack(self, **kwargs):
        name = kwargs["StackName"]
        self.calls.append(("update", name))
        self.requests.append(kwargs)
        stack = self._find(name)
        if stack is None:
            raise self._not_found(name, "UpdateStack")
        if self.no_updates:
            raise ClientError(
                {"Error": {"Code": "ValidationError", "Message": "No updates are to be performed."}},
                "UpdateStack"
            )

        previous = {p["ParameterKey"]: p["ParameterValue"] for p in stack["Parameters"]}
        stack["Parameters"] = [
            {"ParameterKey": p["ParameterKey"],
             "ParameterValue": previous.get(p["ParameterKey"]) if p.get("UsePreviousValue") else p["ParameterValue"]}
            for p in kwargs.get("Parameters", [])
        ]
        if name in self.outputs:
            stack["Outputs"] = [{"OutputKey": k, "OutputValue": v} for k, v in self.outputs[name].items()]
        stack["LastUpdatedTime"] = self._now()
        self._start(stack, "update", "UPDATE_COMPLETE")
        return {"StackId": stack["StackId"]}

    def delete_stack(self, StackName):
        self.calls.append(("delete", StackName))
        stack = self._find(StackName)
        if stack is not None:
            stack["DeletionTime"] = self._now()
            self._start(stack, "delete", "DELETE_COMPLETE")
        return {}

    def describe_stack_events(self, StackName):
        return {"StackEvents": []}

    def get_paginator(self, operation_name):
        paginator = MagicMock()
        paginator.paginate.side_effect = lambda **kwargs: iter([getattr(self, operation_name)(**kwargs)])
        return paginator

    def operations(self):
        """Mutating calls only: [("create", name), ("delete", id), ...]."""
        return [call for call in self.calls if call[0] != "describe"]


@pytest.fixture
def fake_cfn():
    return FakeCloudFormation()


class FakeClientProvider:
    """Hands out one client per service; MagicMock unless set explicitly."""

    def __init__(self, **clients):
        self.clients = dict(clients)
        self.requested = []

    def get_client(self, service_name, environment):
        self.requested.append((service_name, environment.name))
        if service_name not in self.clients:
            self.clients[service_name] = MagicMock()
        return self.clients[service_name]


@pytest.fixture
def client_provider(fake_cfn):
    return FakeClientProvider(cloudformation=fake_cfn)


@pytest.fixture
def resolver(environment):
    """Resolver stub returning the same environment for every stack."""
    mock = MagicMock()
    mock.resolve.return_value = environment
    mock.default_region = environment.region
    mock.default_account = environment.account
    return mock
