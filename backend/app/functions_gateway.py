"""Serverless function invocation for nextmic.

Wraps ``supabase.functions.invoke`` and lets the application serve some
function names in-process (e.g. ``createFollowUpReminders``), so callers
address every function the same way regardless of where it runs.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from supabase import Client

logger = logging.getLogger(__name__)

FunctionHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


class FunctionInvocationError(Exception):
    """A serverless function could not be reached or returned an error."""

    def __init__(self, name: str, message: str):
        super().__init__(f"Function '{name}' failed: {message}")
        self.name = name


class FunctionsGateway:
    """Dispatch function calls to local handlers or Supabase edge functions."""

    def __init__(self, client: Optional[Client] = None):
        self._client = client
        self._handlers: Dict[str, FunctionHandler] = {}

    def register(self, name: str, handler: FunctionHandler) -> None:
        self._handlers[name] = handler

    def is_local(self, name: str) -> bool:
        return name in self._handlers

    async def invoke(self, name: str, payload: Dict[str, Any]) -> Any:
        handler = self._handlers.get(name)
        if handler is not None:
            logger.debug("Invoking in-process function %s", name)
            return await handler(payload)

        if self._client is None:
            raise FunctionInvocationError(name, "Supabase client not configured")

        try:
            # Wrap synchronous supabase-py call to avoid blocking the event loop
            response = await asyncio.to_thread(
                self._client.functions.invoke,
                name,
                invoke_options={"body": payload},
            )
        except Exception as e:
            raise FunctionInvocationError(name, str(e)[:200]) from e

        return _decode_response(response)


def _decode_response(response: Any) -> Any:
    if isinstance(response, (bytes, bytearray)):
        text = response.decode("utf-8", errors="replace")
        try:
            return json.loads(text)
        except ValueError:
            return text
    return response
