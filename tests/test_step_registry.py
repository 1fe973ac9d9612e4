"""Tests for the step executor registry."""

from typing import Any
from unittest.mock import AsyncMock

import pytest

from flowdesk.core.exceptions import StepExecutorNotFoundError, TerminalStepFailure
from flowdesk.workflows.registry import FunctionStepExecutor, StepExecutor, StepExecutorRegistry


class _EchoExecutor:
    """Minimal hand-written executor."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def invoke(self, function_name: str, parameters: dict[str, Any]) -> str:
        self.calls.append((function_name, parameters))
        return f"{function_name}:{parameters.get('value', '')}"


class TestStepExecutorRegistry:
    """Tests for StepExecutorRegistry."""

    async def test_invoke_routes_to_plugin(self) -> None:
        registry = StepExecutorRegistry()
        echo = _EchoExecutor()
        registry.register("MailPlugin", echo)

        result = await registry.invoke_step("mailplugin", "Send", {"value": "hi"})

        assert result == "Send:hi"
        assert echo.calls == [("Send", {"value": "hi"})]

    async def test_unknown_plugin_raises_terminal_error(self) -> None:
        registry = StepExecutorRegistry()

        with pytest.raises(StepExecutorNotFoundError) as exc_info:
            await registry.invoke_step("Nope", "Run", {})

        assert isinstance(exc_info.value, TerminalStepFailure)
        assert exc_info.value.message == "Function 'Run' not found in plugin 'Nope'"

    async def test_non_string_results_are_stringified(self) -> None:
        registry = StepExecutorRegistry()
        functions = {
            "Count": AsyncMock(return_value=3),
            "Nothing": AsyncMock(return_value=None),
        }
        registry.register("P", FunctionStepExecutor(functions))

        assert await registry.invoke_step("P", "Count", {}) == "3"
        assert await registry.invoke_step("P", "Nothing", {}) == ""

    async def test_parameters_are_copied(self) -> None:
        """Executors cannot mutate the caller's parameter dict."""

        async def mutate(params: dict[str, Any]) -> str:
            params["injected"] = True
            return "ok"

        registry = StepExecutorRegistry()
        registry.register("P", FunctionStepExecutor({"Mutate": mutate}))
        params = {"a": 1}

        await registry.invoke_step("P", "Mutate", params)

        assert params == {"a": 1}

    def test_register_rejects_non_executor(self) -> None:
        registry = StepExecutorRegistry()

        with pytest.raises(TypeError):
            registry.register("Bad", object())  # type: ignore[arg-type]

    def test_replacing_an_executor(self) -> None:
        registry = StepExecutorRegistry()
        registry.register("P", _EchoExecutor())
        registry.register("p", _EchoExecutor())

        assert registry.plugin_names == ["p"]
        assert registry.has_plugin("P")


class TestFunctionStepExecutor:
    """Tests for FunctionStepExecutor."""

    async def test_lookup_is_case_insensitive(self) -> None:
        fn = AsyncMock(return_value="done")
        executor = FunctionStepExecutor({"CreateNote": fn}, plugin_name="ToDoPlugin")

        assert await executor.invoke("createnote", {"x": 1}) == "done"
        fn.assert_awaited_once_with({"x": 1})
        assert executor.function_names == ["createnote"]

    async def test_unknown_function(self) -> None:
        executor = FunctionStepExecutor({}, plugin_name="ToDoPlugin")

        with pytest.raises(StepExecutorNotFoundError, match="ToDoPlugin"):
            await executor.invoke("Missing", {})

    def test_satisfies_protocol(self) -> None:
        assert isinstance(FunctionStepExecutor({}), StepExecutor)
