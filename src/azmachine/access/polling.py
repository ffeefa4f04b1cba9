"""Waiting on Azure long-running operations under an OperationContext."""

import logging
from typing import Any

from azure.core.polling import LROPoller

from azmachine.operation import OperationContext

logger = logging.getLogger(__name__)


def wait_for_completion(poller: LROPoller, context: OperationContext, description: str) -> Any:
    """Block until a long-running operation finishes.

    The poller is waited on in slices of the context's poll interval so that a
    cancellation or deadline is noticed between slices. The operation itself is
    not aborted on Azure's side; only the wait is given up.

    Args:
        poller: Poller returned by a ``begin_*`` call
        context: Cancellation context of the invocation
        description: What is being waited for (used in errors and logs)

    Returns:
        Result of the operation

    Raises:
        OperationCancelledError: If the context is cancelled while waiting
        HttpResponseError: If the operation failed on Azure's side
    """
    while True:
        context.check(f"completion of {description}")
        poller.wait(timeout=context.next_wait())
        if poller.done():
            logger.debug(f"Long-running operation finished: {description}")
            return poller.result()
