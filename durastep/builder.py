"""Workflow definition builder."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple, Union

from .constants import FINISHED_RECOVERY_POINT
from .errors import (
    DuplicateStepError,
    InvalidStepOptionError,
    MissingStepsError,
    UndefinedMethodError,
)
from .plugins.pipeline import PluginPipeline

if TYPE_CHECKING:
    from .job import Job

FOR_EACH = "for_each"
AWAITS = "awaits"

Handler = Callable[..., Any]


def _noop(run: Any) -> None:
    return None


class WorkflowBuilder:
    """Collects steps in order and turns them into a linear step graph.

    Each step resolves its handler at definition time: an explicit ``does``
    callable, else the job method named by ``does`` or by the step itself.
    Steps that only await children may omit the handler.
    """

    def __init__(self, job: "Job", pipeline: PluginPipeline) -> None:
        self._job = job
        self._pipeline = pipeline
        self._steps: List[Tuple[str, Dict[str, Any]]] = []
        self.handlers: Dict[str, Handler] = {}

    @property
    def step_names(self) -> List[str]:
        return [name for name, _ in self._steps]

    def step(
        self,
        name: str,
        does: Union[str, Handler, None] = None,
        **options: Any,
    ) -> "WorkflowBuilder":
        """Append a step; returns the builder so calls can be chained."""
        name = str(name)
        if name == FINISHED_RECOVERY_POINT:
            raise InvalidStepOptionError(name, "name", "reserved for finished workflows")
        if name in self.handlers:
            raise DuplicateStepError(name)

        handler, handler_name = self._resolve_handler(name, does, options)
        definition: Dict[str, Any] = {"does": handler_name}
        for keyword, value in options.items():
            definition[keyword] = self._validate_option(name, keyword, value)

        self._steps.append((name, definition))
        self.handlers[name] = handler
        return self

    def _resolve_handler(
        self, name: str, does: Union[str, Handler, None], options: Dict[str, Any]
    ) -> Tuple[Handler, str]:
        if does is not None and not isinstance(does, str):
            if not callable(does):
                raise InvalidStepOptionError(name, "does", "must be a method name or callable")
            return does, getattr(does, "__name__", name)

        method_name = does or name
        method = getattr(self._job, method_name, None)
        if method is not None and callable(method):
            return method, method_name
        if options.get(AWAITS) is not None:
            return _noop, method_name
        raise UndefinedMethodError(method_name)

    def _validate_option(self, step: str, keyword: str, value: Any) -> Any:
        if keyword in ("does", "then"):
            raise InvalidStepOptionError(step, keyword, "set by the builder")
        if keyword == FOR_EACH:
            if not isinstance(value, str) or not value:
                raise InvalidStepOptionError(step, keyword, "must name a context key")
            return value
        if not self._pipeline.recognizes(keyword):
            raise InvalidStepOptionError(step, keyword, "no configured plugin handles it")
        return self._pipeline.validate(step, keyword, value)

    def define_workflow(self) -> Dict[str, Dict[str, Any]]:
        """Return the ordered step graph ``{name: {does, then, ...options}}``."""
        if not self._steps:
            raise MissingStepsError()

        following = self.step_names[1:] + [FINISHED_RECOVERY_POINT]
        workflow = {
            name: {**definition, "then": next_step}
            for (name, definition), next_step in zip(self._steps, following)
        }
        try:
            # stored definitions come back from JSON, so compare in that form
            return json.loads(json.dumps(workflow))
        except (TypeError, ValueError) as e:
            raise InvalidStepOptionError(
                self.step_names[0], "options", f"not JSON serializable: {e}"
            ) from e

    @property
    def first_step(self) -> Optional[str]:
        return self._steps[0][0] if self._steps else None
