"""
CloudFormation stack lifecycle.

This module classifies stack statuses and drives single stack operations:
find, create, update, delete, and waiting for an operation to settle.

Transitions are driven entirely by CloudFormation; this module never
guesses a state. ``await_completion`` re-describes the stack on every poll
and returns as soon as the status is no longer in progress.

Logical states:
    ABSENT, IN_PROGRESS, AWAITING_REVIEW, COMPLETE, FAILED, ROLLED_BACK,
    DELETE_COMPLETE

Usage:
    stack = create_stack(client, "MyStack", TemplateRef.from_body(body), {}, {}, [])
    stack = await_completion(client, stack, LoggingStackEventListener())
    if is_failed(stack) or is_rolled_back(stack):
        ...
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence

from botocore.exceptions import ClientError

from cdk_deployer import constants as CONSTANTS
from cdk_deployer.assembly.models import ParameterValue, TemplateRef
from cdk_deployer.core.exceptions import OperationCancelledError
from cdk_deployer.core.protocols import StackEventListener

logger = logging.getLogger(__name__)

Stack = Dict[str, Any]


class StackState(Enum):
    ABSENT = "absent"
    IN_PROGRESS = "in_progress"
    AWAITING_REVIEW = "awaiting_review"
    COMPLETE = "complete"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    DELETE_COMPLETE = "delete_complete"


COMPLETED_STATUSES = frozenset({
    "CREATE_COMPLETE",
    "UPDATE_COMPLETE",
    "IMPORT_COMPLETE",
    "DELETE_COMPLETE",
})

FAILED_STATUSES = frozenset({
    "CREATE_FAILED",
    "DELETE_FAILED",
    "UPDATE_FAILED",
    "ROLLBACK_FAILED",
    "UPDATE_ROLLBACK_FAILED",
    "IMPORT_ROLLBACK_FAILED",
})

ROLLED_BACK_STATUSES = frozenset({
    "ROLLBACK_COMPLETE",
    "UPDATE_ROLLBACK_COMPLETE",
    "IMPORT_ROLLBACK_COMPLETE",
})

# Created by a change set that was never executed; it stays there until
# the change set is executed or the stack is deleted.
REVIEW_STATUS = "REVIEW_IN_PROGRESS"

# A stack whose first creation failed: it can only be deleted, never updated.
ROLLBACK_TERMINAL_STATUSES = frozenset({
    "ROLLBACK_COMPLETE",
    "ROLLBACK_FAILED",
})


# ==========================================
# Status Classification
# ==========================================

def _status(stack: 'Stack | str') -> str:
    return stack if isinstance(stack, str) else stack["StackStatus"]


def is_in_progress(stack: 'Stack | str') -> bool:
    status = _status(stack)
    return status.endswith("_IN_PROGRESS") and status != REVIEW_STATUS


def is_awaiting_review(stack: 'Stack | str') -> bool:
    return _status(stack) == REVIEW_STATUS


def is_completed(stack: 'Stack | str') -> bool:
    return _status(stack) in COMPLETED_STATUSES


def is_failed(stack: 'Stack | str') -> bool:
    return _status(stack) in FAILED_STATUSES


def is_rolled_back(stack: 'Stack | str') -> bool:
    return _status(stack) in ROLLED_BACK_STATUSES


def is_rollback_terminal(stack: 'Stack | str') -> bool:
    return _status(stack) in ROLLBACK_TERMINAL_STATUSES


def is_deleted(stack: Optional[Stack]) -> bool:
    return stack is None or stack["StackStatus"] == "DELETE_COMPLETE"


def classify(stack: Optional[Stack]) -> StackState:
    """
    Map a described stack (or None) to its logical state.

    Example:
        >>> classify({"StackStatus": "UPDATE_ROLLBACK_COMPLETE"})
        StackState.ROLLED_BACK
    """
    if stack is None:
        return StackState.ABSENT
    status = _status(stack)
    if status == "DELETE_COMPLETE":
        return StackState.DELETE_COMPLETE
    if is_awaiting_review(status):
        return StackState.AWAITING_REVIEW
    if is_in_progress(status):
        return StackState.IN_PROGRESS
    if is_completed(status):
        return StackState.COMPLETE
    if is_failed(status):
        return StackState.FAILED
    if is_rolled_back(status):
        return StackState.ROLLED_BACK
    raise ValueError(f"Unknown stack status: {status}")


# ==========================================
# Stack Attributes
# ==========================================

def get_outputs(stack: Optional[Stack]) -> Dict[str, str]:
    if stack is None:
        return {}
    return {o["OutputKey"]: o.get("OutputValue", "") for o in stack.get("Outputs", [])}


def get_parameter_keys(stack: Optional[Stack]) -> List[str]:
    if stack is None:
        return []
    return [p["ParameterKey"] for p in stack.get("Parameters", [])]


def last_change(stack: Stack) -> datetime:
    """Time of the most recent operation started on the stack."""
    return (stack.get("DeletionTime")
            or stack.get("LastUpdatedTime")
            or stack.get("CreationTime")
            or datetime.now(timezone.utc))


# ==========================================
# Stack Operations
# ==========================================

def _is_not_found(error: ClientError) -> bool:
    return (error.response["Error"]["Code"] == "ValidationError"
            and "does not exist" in error.response["Error"].get("Message", ""))


def find_stack(client, stack_name: str) -> Optional[Stack]:
    """
    Describe a stack by name or id.

    Returns:
        The described stack, or None if it does not exist.
    """
    try:
        stacks = client.describe_stacks(StackName=stack_name)["Stacks"]
    except ClientError as e:
        if _is_not_found(e):
            return None
        raise
    return stacks[0] if stacks else None


def describe_stack(client, stack_id: str) -> Stack:
    stack = find_stack(client, stack_id)
    if stack is None:
        raise RuntimeError(f"Stack '{stack_id}' disappeared while it was being observed")
    return stack


def _parameters_request(parameters: Mapping[str, ParameterValue]) -> List[Dict[str, Any]]:
    return [value.to_request(key) for key, value in sorted(parameters.items())]


def _tags_request(tags: Optional[Mapping[str, str]]) -> List[Dict[str, str]]:
    return [{"Key": key, "Value": value} for key, value in sorted((tags or {}).items())]


def create_stack(
    client,
    stack_name: str,
    template: TemplateRef,
    parameters: Mapping[str, ParameterValue],
    tags: Optional[Mapping[str, str]] = None,
    notification_arns: Optional[Sequence[str]] = None
) -> Stack:
    """Start creating a stack and return its freshly described state."""
    unchanged = [key for key, value in parameters.items() if value.is_unchanged]
    if unchanged:
        raise ValueError(f"Cannot reuse previous parameter values when creating a stack: {unchanged}")

    response = client.create_stack(
        StackName=stack_name,
        Parameters=_parameters_request(parameters),
        Tags=_tags_request(tags),
        NotificationARNs=list(notification_arns or []),
        Capabilities=CONSTANTS.STACK_CAPABILITIES,
        **template.to_request()
    )
    return describe_stack(client, response["StackId"])


def update_stack(
    client,
    stack_name: str,
    template: TemplateRef,
    parameters: Mapping[str, ParameterValue],
    tags: Optional[Mapping[str, str]] = None,
    notification_arns: Optional[Sequence[str]] = None
) -> Stack:
    """
    Start updating a stack and return its freshly described state.

    An update without changes returns the current stack as is.
    """
    try:
        response = client.update_stack(
            StackName=stack_name,
            Parameters=_parameters_request(parameters),
            Tags=_tags_request(tags),
            NotificationARNs=list(notification_arns or []),
            Capabilities=CONSTANTS.STACK_CAPABILITIES,
            **template.to_request()
        )
    except ClientError as e:
        if (e.response["Error"]["Code"] == "ValidationError"
                and "No updates are to be performed" in e.response["Error"].get("Message", "")):
            logger.info(f"The stack '{stack_name}' is up to date, no changes to deploy")
            return describe_stack(client, stack_name)
        raise
    return describe_stack(client, response["StackId"])


def delete_stack(client, stack_id: str) -> Stack:
    """Start deleting a stack (by id) and return its freshly described state."""
    client.delete_stack(StackName=stack_id)
    return describe_stack(client, stack_id)


# ==========================================
# Waiting
# ==========================================

@dataclass(frozen=True)
class BackoffPolicy:
    """Polling intervals: start at ``initial_delay`` and grow up to ``max_delay``."""

    initial_delay: float = CONSTANTS.DEFAULT_POLL_INITIAL_DELAY
    max_delay: float = CONSTANTS.DEFAULT_POLL_MAX_DELAY
    multiplier: float = CONSTANTS.DEFAULT_POLL_MULTIPLIER

    def delays(self) -> Iterator[float]:
        delay = self.initial_delay
        while True:
            yield delay
            delay = min(delay * self.multiplier, self.max_delay)


class _EventStream:
    """
    Tracks which stack events were already forwarded to a listener.

    Events are returned newest first, so pages are only read until the first
    event that was already seen or predates ``since``.
    """

    def __init__(self, client, stack_id: str, since: datetime, listener: StackEventListener):
        self._client = client
        self._stack_id = stack_id
        self._since = since
        self._listener = listener
        self._seen: set = set()

    def _events(self) -> Iterator[Dict[str, Any]]:
        paginator = self._client.get_paginator("describe_stack_events")
        for page in paginator.paginate(StackName=self._stack_id):
            yield from page.get("StackEvents", [])

    def poll(self) -> None:
        new_events = []
        for event in self._events():
            if event["Timestamp"] < self._since or event["EventId"] in self._seen:
                break
            self._seen.add(event["EventId"])
            new_events.append(event)

        for event in reversed(new_events):
            self._listener.on_event(event)


def await_completion(
    client,
    stack: Stack,
    listener: Optional[StackEventListener] = None,
    backoff: Optional[BackoffPolicy] = None,
    is_pending: Callable[[Stack], bool] = is_in_progress,
    cancel_event: Optional[threading.Event] = None,
    since: Optional[datetime] = None
) -> Stack:
    """
    Poll a stack until ``is_pending`` no longer holds.

    There is no internal timeout; callers wanting a deadline can pass a
    ``cancel_event`` and set it from elsewhere.

    Args:
        client: CloudFormation client
        stack: The stack as last described (must contain StackId)
        listener: Optional receiver of new stack events, oldest first
        backoff: Polling intervals (defaults to BackoffPolicy())
        is_pending: Status classifier deciding whether to keep waiting
        cancel_event: Makes the wait cancellable
        since: Only events at or after this time are forwarded

    Returns:
        The stack as described by the last poll.

    Raises:
        OperationCancelledError: If cancel_event is set while waiting
    """
    backoff = backoff or BackoffPolicy()
    stack_id = stack["StackId"]
    events = None
    if listener is not None:
        events = _EventStream(client, stack_id, since or last_change(stack), listener)

    delays = backoff.delays()
    while True:
        if events is not None:
            events.poll()
        if not is_pending(stack):
            return stack

        delay = next(delays)
        if cancel_event is not None:
            if cancel_event.wait(delay):
                raise OperationCancelledError(
                    f"Stopped waiting for the stack operation ({stack['StackStatus']})",
                    stack_name=stack["StackName"]
                )
        else:
            time.sleep(delay)

        stack = describe_stack(client, stack_id)
