"""
Text Enhancement Service Interface

The pipeline only needs an awaitable ``prompt -> text`` call; transport,
authentication and caching belong to the implementation.
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from typing import Any, Callable


class TextEnhancementService(ABC):
    """Produces enhanced text for a prompt."""

    @abstractmethod
    async def enhance(self, prompt: str) -> str:
        """
        Generate text for a prompt.

        Args:
            prompt: Full prompt text

        Returns:
            Generated text
        """


class CallableEnhancementService(TextEnhancementService):
    """
    Adapts a plain or coroutine function to the service interface.

    Plain functions run in the loop's default executor so a blocking client
    cannot stall the event loop or outlive the enhancement timeout.
    """

    def __init__(self, func: Callable[[str], Any]):
        self.func = func

    async def enhance(self, prompt: str) -> str:
        if inspect.iscoroutinefunction(self.func):
            result = await self.func(prompt)
        else:
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(None, self.func, prompt)
            if inspect.isawaitable(result):
                result = await result
        return "" if result is None else str(result)
