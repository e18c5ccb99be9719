"""Shared helpers for async services backed by the synchronous SQLAlchemy session."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

T = TypeVar("T")


class ThreadedService:
    """Runs blocking persistence work in a worker thread to keep the event loop free."""

    async def _run_in_thread(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Execute a blocking function in a thread to avoid blocking the event loop.

        Args:
            func: Callable to execute
            *args: Positional arguments for callable
            **kwargs: Keyword arguments for callable

        Returns:
            Result of the callable
        """

        return await asyncio.to_thread(func, *args, **kwargs)
