"""Step executor registry.

A *step executor* is any object implementing :class:`StepExecutor` -- an
async ``invoke(function_name, parameters) -> str``. Executors are registered
per plugin name at startup; the engine reaches the rest of the system only
through :meth:`StepExecutorRegistry.invoke_step`.

Usage::

    registry = StepExecutorRegistry()
    registry.register("MailPlugin", mail_executor)
    registry.register(
        "ToDoPlugin",
        FunctionStepExecutor({"CreateNote": create_note}),
    )
"""

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol, runtime_checkable

from flowdesk.core.exceptions import StepExecutorNotFoundError

logger = logging.getLogger(__name__)

StepFunction = Callable[[dict[str, Any]], Awaitable[str]]


@runtime_checkable
class StepExecutor(Protocol):
    """Capability contract for anything that can perform workflow steps."""

    async def invoke(self, function_name: str, parameters: dict[str, Any]) -> str:
        """Perform *function_name* with *parameters* and return its result.

        Raises:
            TerminalStepFailure: For non-retryable errors (bad input).
            Exception: Anything else is treated as a transient failure.
        """
        ...


class FunctionStepExecutor:
    """Adapts a mapping of function name → async callable to a StepExecutor."""

    def __init__(self, functions: Mapping[str, StepFunction], plugin_name: str = "") -> None:
        self._functions = {name.lower(): fn for name, fn in functions.items()}
        self._plugin_name = plugin_name

    @property
    def function_names(self) -> list[str]:
        """Registered function names (lower-cased)."""
        return sorted(self._functions)

    async def invoke(self, function_name: str, parameters: dict[str, Any]) -> str:
        fn = self._functions.get(function_name.lower())
        if fn is None:
            raise StepExecutorNotFoundError(self._plugin_name or "<anonymous>", function_name)
        return await fn(parameters)


class StepExecutorRegistry:
    """Static map from plugin name to :class:`StepExecutor`.

    Plugin lookup is case-insensitive, matching how plugin names are written
    in templates.
    """

    def __init__(self) -> None:
        self._executors: dict[str, StepExecutor] = {}

    def register(self, plugin_name: str, executor: StepExecutor) -> None:
        """Register *executor* for *plugin_name*, replacing any previous one.

        Raises:
            TypeError: If *executor* does not implement ``invoke``.
        """
        if not isinstance(executor, StepExecutor):
            raise TypeError(f"Executor for {plugin_name!r} must implement invoke()")
        key = plugin_name.lower()
        if key in self._executors:
            logger.warning("Replacing step executor for plugin %s", plugin_name)
        self._executors[key] = executor
        logger.debug("Registered step executor for plugin %s", plugin_name)

    def has_plugin(self, plugin_name: str) -> bool:
        """Whether an executor is registered for *plugin_name*."""
        return plugin_name.lower() in self._executors

    @property
    def plugin_names(self) -> list[str]:
        """Registered plugin names (lower-cased)."""
        return sorted(self._executors)

    async def invoke_step(
        self,
        plugin_name: str,
        function_name: str,
        parameters: dict[str, Any],
    ) -> str:
        """Invoke one step through its plugin's executor.

        Args:
            plugin_name: Plugin the step targets.
            function_name: Function to call on that plugin.
            parameters: Resolved step parameters.

        Returns:
            The executor's raw string result.

        Raises:
            StepExecutorNotFoundError: If no executor handles *plugin_name*.
        """
        executor = self._executors.get(plugin_name.lower())
        if executor is None:
            raise StepExecutorNotFoundError(plugin_name, function_name)
        result = await executor.invoke(function_name, dict(parameters))
        return "" if result is None else str(result)
