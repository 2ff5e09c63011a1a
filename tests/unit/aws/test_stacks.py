"""
Unit tests for the CloudFormation stack lifecycle.

Tests status classification, the stack operations and await_completion
against the in-memory FakeCloudFormation.
"""

import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from cdk_deployer.assembly.models import ParameterValue, TemplateRef
from cdk_deployer.aws import stacks as cfn
from cdk_deployer.aws.stacks import BackoffPolicy, StackState
from cdk_deployer.core.exceptions import OperationCancelledError


class TestStatusClassification:
    """Test the status predicates and classify()."""

    @pytest.mark.parametrize("status", [
        "CREATE_IN_PROGRESS", "UPDATE_IN_PROGRESS", "DELETE_IN_PROGRESS",
        "ROLLBACK_IN_PROGRESS", "UPDATE_COMPLETE_CLEANUP_IN_PROGRESS",
        "UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS", "IMPORT_IN_PROGRESS",
    ])
    def test_in_progress_statuses(self, status):
        assert cfn.is_in_progress(status)
        assert cfn.classify({"StackStatus": status}) == StackState.IN_PROGRESS

    @pytest.mark.parametrize("status,state", [
        ("CREATE_COMPLETE", StackState.COMPLETE),
        ("UPDATE_COMPLETE", StackState.COMPLETE),
        ("IMPORT_COMPLETE", StackState.COMPLETE),
        ("DELETE_COMPLETE", StackState.DELETE_COMPLETE),
        ("CREATE_FAILED", StackState.FAILED),
        ("UPDATE_ROLLBACK_FAILED", StackState.FAILED),
        ("ROLLBACK_FAILED", StackState.FAILED),
        ("ROLLBACK_COMPLETE", StackState.ROLLED_BACK),
        ("UPDATE_ROLLBACK_COMPLETE", StackState.ROLLED_BACK),
        ("IMPORT_ROLLBACK_COMPLETE", StackState.ROLLED_BACK),
    ])
    def test_terminal_statuses(self, status, state):
        assert not cfn.is_in_progress(status)
        assert cfn.classify({"StackStatus": status}) == state

    def test_review_status_is_not_in_progress(self):
        assert not cfn.is_in_progress("REVIEW_IN_PROGRESS")
        assert cfn.is_awaiting_review({"StackStatus": "REVIEW_IN_PROGRESS"})
        assert cfn.classify({"StackStatus": "REVIEW_IN_PROGRESS"}) == StackState.AWAITING_REVIEW

    def test_absent_stack(self):
        assert cfn.classify(None) == StackState.ABSENT
        assert cfn.is_deleted(None)

    def test_rollback_terminal_statuses(self):
        assert cfn.is_rollback_terminal("ROLLBACK_COMPLETE")
        assert cfn.is_rollback_terminal("ROLLBACK_FAILED")
        assert not cfn.is_rollback_terminal("UPDATE_ROLLBACK_COMPLETE")

    def test_unknown_status_raises(self):
        with pytest.raises(ValueError):
            cfn.classify({"StackStatus": "SOMETHING_NEW"})


class TestStackOperations:
    """Test find/create/update/delete."""

    def test_find_missing_stack_returns_none(self, fake_cfn):
        assert cfn.find_stack(fake_cfn, "Missing") is None

    def test_find_stack_reraises_other_errors(self):
        client = MagicMock()
        client.describe_stacks.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "DescribeStacks"
        )
        with pytest.raises(ClientError):
            cfn.find_stack(client, "Any")

    def test_create_stack_requests_capabilities(self, fake_cfn):
        # Act
        stack = cfn.create_stack(
            fake_cfn, "App", TemplateRef.from_body("{}"),
            {"Env": ParameterValue.literal("prod")}, {"team": "a"}, ["arn:sns"]
        )

        # Assert
        request = fake_cfn.requests[0]
        assert stack["StackStatus"] == "CREATE_IN_PROGRESS"
        assert request["Capabilities"] == ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM", "CAPABILITY_AUTO_EXPAND"]
        assert request["TemplateBody"] == "{}"
        assert request["Parameters"] == [{"ParameterKey": "Env", "ParameterValue": "prod"}]
        assert request["Tags"] == [{"Key": "team", "Value": "a"}]
        assert request["NotificationARNs"] == ["arn:sns"]

    def test_create_stack_rejects_unchanged_parameters(self, fake_cfn):
        with pytest.raises(ValueError):
            cfn.create_stack(fake_cfn, "App", TemplateRef.from_body("{}"), {"A": ParameterValue.unchanged()})
        assert fake_cfn.operations() == []

    def test_update_with_url_template_and_unchanged_parameter(self, fake_cfn):
        fake_cfn.add_stack("App", "CREATE_COMPLETE", parameters={"A": "1"})

        cfn.update_stack(fake_cfn, "App", TemplateRef.from_url("https://bucket/t.json"),
                         {"A": ParameterValue.unchanged()})

        request = fake_cfn.requests[0]
        assert request["TemplateURL"] == "https://bucket/t.json"
        assert "TemplateBody" not in request
        assert request["Parameters"] == [{"ParameterKey": "A", "UsePreviousValue": True}]

    def test_update_without_changes_returns_current_stack(self, fake_cfn):
        fake_cfn.add_stack("App", "UPDATE_COMPLETE")
        fake_cfn.no_updates = True

        stack = cfn.update_stack(fake_cfn, "App", TemplateRef.from_body("{}"), {})

        assert stack["StackStatus"] == "UPDATE_COMPLETE"

    def test_delete_stack_by_id_stays_observable(self, fake_cfn):
        existing = fake_cfn.add_stack("App", "CREATE_COMPLETE")

        stack = cfn.delete_stack(fake_cfn, existing["StackId"])
        stack = cfn.await_completion(fake_cfn, stack)

        assert stack["StackStatus"] == "DELETE_COMPLETE"
        assert cfn.find_stack(fake_cfn, "App") is None


class TestAwaitCompletion:
    """Test polling until a terminal status."""

    def test_polls_until_terminal(self, fake_cfn):
        fake_cfn.pending_polls = 3
        stack = cfn.create_stack(fake_cfn, "App", TemplateRef.from_body("{}"), {})

        result = cfn.await_completion(fake_cfn, stack)

        assert result["StackStatus"] == "CREATE_COMPLETE"
        describes = [c for c in fake_cfn.calls if c[0] == "describe"]
        assert all(c[1] == stack["StackId"] for c in describes)

    def test_reports_rolled_back_result(self, fake_cfn):
        fake_cfn.results["create"] = "ROLLBACK_COMPLETE"
        stack = cfn.create_stack(fake_cfn, "App", TemplateRef.from_body("{}"), {})

        result = cfn.await_completion(fake_cfn, stack)

        assert cfn.is_rolled_back(result)

    def test_returns_immediately_for_terminal_stack(self):
        client = MagicMock()
        stack = {"StackId": "id", "StackName": "App", "StackStatus": "UPDATE_COMPLETE"}

        assert cfn.await_completion(client, stack) is stack
        client.describe_stacks.assert_not_called()

    def test_custom_classifier(self, fake_cfn):
        existing = fake_cfn.add_stack("App", "CREATE_COMPLETE")
        calls = []

        def pending_twice(stack):
            calls.append(stack["StackStatus"])
            return len(calls) < 3

        cfn.await_completion(fake_cfn, existing, is_pending=pending_twice)

        assert len(calls) == 3

    def test_streams_new_events_oldest_first(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        client = MagicMock()
        client.describe_stacks.return_value = {"Stacks": [
            {"StackId": "id", "StackName": "App", "StackStatus": "CREATE_COMPLETE"}
        ]}
        old = {"EventId": "0", "Timestamp": start - timedelta(minutes=5), "ResourceStatus": "CREATE_COMPLETE"}
        first = {"EventId": "1", "Timestamp": start, "ResourceStatus": "CREATE_IN_PROGRESS"}
        second = {"EventId": "2", "Timestamp": start + timedelta(seconds=5), "ResourceStatus": "CREATE_COMPLETE"}
        client.get_paginator.return_value.paginate.side_effect = [
            [{"StackEvents": [first, old]}],
            [{"StackEvents": [second, first, old]}],
        ]
        listener = MagicMock()
        stack = {"StackId": "id", "StackName": "App", "StackStatus": "CREATE_IN_PROGRESS", "CreationTime": start}

        cfn.await_completion(client, stack, listener)

        received = [c.args[0]["EventId"] for c in listener.on_event.call_args_list]
        assert received == ["1", "2"]
        client.get_paginator.assert_called_with("describe_stack_events")

    def test_streams_events_from_every_page(self):
        # Arrange
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        client = MagicMock()
        client.describe_stacks.return_value = {"Stacks": [
            {"StackId": "id", "StackName": "App", "StackStatus": "CREATE_COMPLETE"}
        ]}
        events = [
            {"EventId": str(i), "Timestamp": start + timedelta(seconds=i), "ResourceStatus": "CREATE_IN_PROGRESS"}
            for i in range(5, 0, -1)
        ]
        old = {"EventId": "0", "Timestamp": start - timedelta(minutes=5), "ResourceStatus": "CREATE_COMPLETE"}
        never_read = MagicMock()
        pages = [{"StackEvents": events[:2]}, {"StackEvents": events[2:] + [old]}, never_read]
        client.get_paginator.return_value.paginate.return_value = iter(pages)
        listener = MagicMock()
        stack = {"StackId": "id", "StackName": "App", "StackStatus": "CREATE_COMPLETE", "CreationTime": start}

        # Act
        cfn.await_completion(client, stack, listener)

        # Assert
        received = [c.args[0]["EventId"] for c in listener.on_event.call_args_list]
        assert received == ["1", "2", "3", "4", "5"]
        never_read.get.assert_not_called()
        client.get_paginator.return_value.paginate.assert_called_once_with(StackName="id")

    def test_cancel_event_stops_waiting(self, fake_cfn):
        fake_cfn.pending_polls = 100
        stack = cfn.create_stack(fake_cfn, "App", TemplateRef.from_body("{}"), {})
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(OperationCancelledError) as exc_info:
            cfn.await_completion(fake_cfn, stack, cancel_event=cancel)

        assert "stack=App" in str(exc_info.value)


class TestBackoffPolicy:
    """Test polling intervals."""

    def test_delays_grow_to_maximum(self):
        delays = BackoffPolicy(initial_delay=1.0, max_delay=4.0, multiplier=2.0).delays()
        assert [next(delays) for _ in range(5)] == [1.0, 2.0, 4.0, 4.0, 4.0]


class TestStackAttributes:

    def test_outputs_and_parameter_keys(self):
        stack = {
            "Outputs": [{"OutputKey": "BucketName", "OutputValue": "b"}],
            "Parameters": [{"ParameterKey": "A", "ParameterValue": "1"}],
        }
        assert cfn.get_outputs(stack) == {"BucketName": "b"}
        assert cfn.get_parameter_keys(stack) == ["A"]
        assert cfn.get_outputs(None) == {}
        assert cfn.get_parameter_keys(None) == []
