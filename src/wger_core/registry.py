"""Operation-name to handler dispatch."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, Any

from wger_core.errors import InvalidOperationError

if TYPE_CHECKING:
    from wger_core.client import ResilientClient

OperationHandler = Callable[["ResilientClient", Mapping[str, Any]], Awaitable[Any]]


class OperationRegistry:
    """Dispatch table owned by the component that executes operations.

    The registry does no validation or retrying of its own; errors raised by a
    handler propagate unchanged.
    """

    def __init__(self, operations: Mapping[str, OperationHandler] | None = None) -> None:
        self._operations: dict[str, OperationHandler] = {}
        if operations is not None:
            self.register_all(operations)

    def register(self, name: str, handler: OperationHandler) -> None:
        if not callable(handler):
            raise TypeError(f"Handler for operation '{name}' must be a function")
        self._operations[name] = handler

    def register_all(self, operations: Mapping[str, OperationHandler]) -> None:
        for name, handler in operations.items():
            self.register(name, handler)

    def has(self, name: str) -> bool:
        return name in self._operations

    def operation_names(self) -> list[str]:
        return list(self._operations)

    async def execute(
        self, name: str, client: ResilientClient, payload: Mapping[str, Any]
    ) -> Any:
        """Run the handler registered under ``name``.

        Raises:
            InvalidOperationError: When no handler is registered under ``name``.
        """
        handler = self._operations.get(name)
        if handler is None:
            raise InvalidOperationError(f"Invalid operation: {name}")
        return await handler(client, payload)
