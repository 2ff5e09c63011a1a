"""Stack event reporting while a stack operation is awaited."""

import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)


class LoggingStackEventListener:
    """
    Logs every stack event as one line.

    Failed resource events are logged as errors together with their status
    reason; everything else at INFO.
    """

    def __init__(self, stack_name: str):
        self.stack_name = stack_name

    def on_event(self, event: Dict[str, Any]) -> None:
        status = event.get("ResourceStatus", "")
        line = (f"{self.stack_name} | {status} | {event.get('ResourceType', '')} | "
                f"{event.get('LogicalResourceId', '')}")
        reason = event.get("ResourceStatusReason")

        if status.endswith("_FAILED"):
            logger.error(f"{line}: {reason}" if reason else line)
        else:
            logger.info(line)
