"""Fold plugins around a step handler."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional, Sequence

from ..contracts import StepOutcome
from ..errors import DoublePluginCallError, InvalidStepOptionError
from .base import CallNext, Plugin, PluginContext

if TYPE_CHECKING:
    from ..runner import StepRun

logger = logging.getLogger(__name__)


class PluginPipeline:
    """Ordered plugins; the first declared plugin ends up outermost."""

    def __init__(self, plugins: Sequence[Plugin] = ()) -> None:
        self.plugins = list(plugins)
        self._by_keyword: Dict[str, Plugin] = {}
        for plugin in self.plugins:
            keyword = str(plugin.keyword)
            if keyword in self._by_keyword:
                raise ValueError(f"Two plugins share the keyword {keyword!r}")
            self._by_keyword[keyword] = plugin

    def recognizes(self, keyword: str) -> bool:
        return keyword in self._by_keyword

    def validate(self, step: str, keyword: str, value: Any) -> Any:
        """Let the owning plugin validate and normalize a step option."""
        plugin = self._by_keyword[keyword]
        try:
            return plugin.validate(value)
        except (TypeError, ValueError) as e:
            if isinstance(e, InvalidStepOptionError):
                raise
            raise InvalidStepOptionError(step, keyword, str(e)) from e

    def wrap(self, run: "StepRun", handler: CallNext) -> CallNext:
        wrapped = handler
        for plugin in reversed(self.plugins):
            wrapped = self._layer(plugin, run, wrapped)
        return wrapped

    @staticmethod
    def _layer(plugin: Plugin, run: "StepRun", inner: CallNext) -> CallNext:
        async def call() -> StepOutcome:
            context = PluginContext(plugin, run)
            if context.inactive:
                return await inner()

            calls = 0
            inner_outcome: Optional[StepOutcome] = None

            async def call_next() -> StepOutcome:
                nonlocal calls, inner_outcome
                calls += 1
                if calls > 1:
                    raise DoublePluginCallError(plugin, run.step)
                inner_outcome = await inner()
                return inner_outcome

            outcome = await plugin.around_step(context, call_next)
            if outcome is not None:
                return outcome
            if run.requested is not None:
                return run.requested
            if inner_outcome is not None:
                return inner_outcome
            logger.debug(
                f"Plugin {plugin.keyword} replaced step {run.step} for execution {run.execution.id}"
            )
            return run.advance()

        return call
