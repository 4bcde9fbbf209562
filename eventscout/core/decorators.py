"""Decorators for the EventScout MCP tools."""

import functools
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

from .exceptions import MCPToolError
from .logging import logger, request_id_ctx

P = ParamSpec("P")
R = TypeVar("R")


def track_request(
    tool_name: str,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Give each tool call a request id and log its outcome and duration.

    ``MCPToolError`` is the expected way for a tool to refuse a call and is
    logged as a warning; anything else is logged with its traceback. Both are
    re-raised.

    Args:
        tool_name: Name of the tool being tracked
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            token = request_id_ctx.set(uuid.uuid4().hex[:8])
            start = time.monotonic()
            logger.info("Starting %s request", tool_name)
            try:
                result = await func(*args, **kwargs)
            except MCPToolError as e:
                logger.warning("Rejected %s after %.2fs: %s", tool_name, time.monotonic() - start, e)
                raise
            except Exception:
                logger.exception("Failed %s after %.2fs", tool_name, time.monotonic() - start)
                raise
            else:
                logger.info("Completed %s in %.2fs", tool_name, time.monotonic() - start)
                return result
            finally:
                request_id_ctx.reset(token)

        return wrapper

    return decorator
