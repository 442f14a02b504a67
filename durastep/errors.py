"""Exception hierarchy for durastep."""

from __future__ import annotations

from typing import Any


class DurastepError(Exception):
    """Base class for all durastep errors."""


class DefinitionError(DurastepError):
    """The workflow definition or its invocation is invalid."""


class ConsistencyError(DurastepError):
    """Stored execution state does not match the current invocation."""


class RedefiningWorkflowError(DefinitionError):
    def __init__(self) -> None:
        super().__init__("can only call `execute_workflow` once within a job attempt")


class UndefinedWorkflowBlockError(DefinitionError):
    def __init__(self) -> None:
        super().__init__("a `define` callable must be passed to `execute_workflow`")


class InvalidWorkflowBlockError(DefinitionError):
    def __init__(self, reason: str = "") -> None:
        message = "`define` must be a callable accepting the workflow builder"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class MissingStepsError(DefinitionError):
    def __init__(self) -> None:
        super().__init__("workflow must define at least one step")


class DuplicateStepError(DefinitionError):
    def __init__(self, step: str) -> None:
        self.step = step
        super().__init__(f"workflow already defines a step named {step!r}")


class InvalidStepOptionError(DefinitionError, ValueError):
    def __init__(self, step: str, option: str, reason: str) -> None:
        self.step = step
        self.option = option
        super().__init__(f"invalid option `{option}` for step {step!r}: {reason}")


class UndefinedMethodError(DefinitionError):
    def __init__(self, method: str) -> None:
        self.method = method
        super().__init__(f"undefined step method: {method!r}")


class UnknownForEachCollectionError(DefinitionError):
    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"context does not hold a `for_each` collection under {key!r}")


class UniterableForEachCollectionError(DefinitionError):
    def __init__(self, key: str, value: Any) -> None:
        self.key = key
        super().__init__(
            f"`for_each` collection {key!r} is not iterable: {type(value).__name__}"
        )


class DoublePluginCallError(DefinitionError):
    def __init__(self, plugin: Any, step: str) -> None:
        self.plugin_name = getattr(plugin, "__name__", type(plugin).__name__)
        self.step = step
        super().__init__(
            f"plugin `{self.plugin_name}` attempted to call step multiple times: {step!r}"
        )


class ArgumentMismatchError(ConsistencyError):
    def __init__(self, expected: Any, existing: Any) -> None:
        self.expected = expected
        self.existing = existing
        super().__init__(
            "existing execution's arguments do not match\n"
            f"  existing: {existing!r}\n"
            f"  expected: {expected!r}"
        )


class DefinitionMismatchError(ConsistencyError):
    def __init__(self, expected: Any, existing: Any) -> None:
        self.expected = expected
        self.existing = existing
        super().__init__(
            "existing execution's definition does not match\n"
            f"  existing: {existing!r}\n"
            f"  expected: {expected!r}"
        )


class UndefinedStepError(ConsistencyError):
    def __init__(self, step: str) -> None:
        self.step = step
        super().__init__(f"workflow does not reference this step: {step!r}")


class UnserializableValueError(DurastepError, ValueError):
    def __init__(self, value: Any) -> None:
        super().__init__(f"cannot serialize value of type {type(value).__name__}")
