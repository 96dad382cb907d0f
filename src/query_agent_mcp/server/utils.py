"""Helpers shared by the HTTP routes."""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Callable, TypeVar

from fastapi import HTTPException, Request

T = TypeVar("T")


def request_id(request: Request) -> str:
    """Use the caller's X-Request-ID header when present, otherwise generate one."""
    return request.headers.get("x-request-id") or str(uuid.uuid4())


async def run_with_deadline(
    func: Callable[..., T],
    *args: Any,
    timeout: float | None,
    on_timeout: Callable[[], None] | None = None,
) -> T:
    """Run blocking core code in a worker thread, bounded by ``timeout`` seconds.

    The worker thread cannot be interrupted and keeps running past the
    deadline; ``on_timeout`` lets it know its result is no longer wanted.

    Raises:
    HTTPException: 504 when the deadline passes first
    """
    try:
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=timeout)
    except asyncio.TimeoutError as exc:
        if on_timeout is not None:
            on_timeout()
        raise HTTPException(status_code=504, detail="Request timed out") from exc
