"""Result Processor — reduce a run's ``results`` to one reported value.

::

    terminated, return_ was the last signal  →  termination value
    no ResultOptions / collect=False / no strategy  →  None
    results[:max_results]  (empty → None)
      first   → results[0]
      last    → results[-1]
      all     → list(results)
      merge   → merger(results) or results[-1]
      custom  → merger(results)   (merger required, checked before the run)
"""

from __future__ import annotations

from typing import Any

from actionspine.core.errors import ResultStrategyError
from actionspine.execution.models import ResultOptions, ResultStrategy, RunContext


def process_results(context: RunContext, options: ResultOptions | None) -> Any:
    """Reported ``result`` for a finished run."""
    if context.terminated and context.last_signal == "return":
        return context.termination_result

    if options is None or not options.collect or options.strategy is None:
        return None

    results = context.results
    if options.max_results is not None:
        results = results[: options.max_results]
    if not results:
        return None

    strategy = ResultStrategy(options.strategy)
    if strategy is ResultStrategy.FIRST:
        return results[0]
    if strategy is ResultStrategy.LAST:
        return results[-1]
    if strategy is ResultStrategy.ALL:
        return list(results)
    if strategy is ResultStrategy.MERGE:
        if options.merger is not None:
            return options.merger(list(results))
        return results[-1]
    if options.merger is None:
        raise ResultStrategyError("Custom result strategy requires a merger function")
    return options.merger(list(results))
