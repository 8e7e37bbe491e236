"""Helpers for invoking blocking boto3 calls from asyncio code.

boto3 clients are synchronous; every call is pushed to an executor and
bounded by a timeout so a hung connection cannot stall a reconciliation
pass. botocore clients are thread-safe, so concurrent calls with distinct
arguments on one client are fine.

The timeout starts when the call is queued, not when a thread picks it up.
The executor therefore needs one thread per requirement in flight (see
main.executor_workers), or a short DescribeStacks can time out behind
another requirement's stack waiter.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable
from concurrent.futures import Executor
from typing import Any, TypeVar

from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_timeout(
    func: Callable[..., T],
    /,
    *args: Any,
    timeout_seconds: float,
    operation_name: str,
    executor: Executor | None = None,
    **kwargs: Any,
) -> T:
    """Run a blocking AWS call in the executor with a timeout.

    Args:
        func: Bound boto3 client method (or waiter.wait).
        *args: Positional arguments for func.
        timeout_seconds: Maximum time to wait for the call.
        operation_name: Human-readable name for logging.
        executor: Executor to run on; None uses the loop default.
        **kwargs: Keyword arguments for func (boto3 style).

    Returns:
        Whatever func returns.

    Raises:
        TimeoutError: If the call exceeds timeout_seconds.
        ClientError / BotoCoreError: Propagated from botocore.
    """
    loop = asyncio.get_running_loop()
    try:
        return await asyncio.wait_for(
            loop.run_in_executor(executor, functools.partial(func, *args, **kwargs)),
            timeout=timeout_seconds,
        )
    except TimeoutError:
        logger.error(
            f"{operation_name} timed out",
            extra={"timeout_seconds": timeout_seconds},
        )
        raise


def error_code(error: ClientError) -> str:
    """Extract the AWS error code from a ClientError."""
    return error.response.get("Error", {}).get("Code", "")


def error_message(error: ClientError) -> str:
    """Extract the AWS error message from a ClientError."""
    return error.response.get("Error", {}).get("Message", "")
