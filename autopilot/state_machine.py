"""
Stage interpreter shared by the Scholar, Ghostwriter and Conductor pipelines.

A pipeline is three things:
    * a ``str`` Enum of stages, including a terminal ``END`` member
    * a handler coroutine per non-terminal stage, mutating the state in place
    * a pure ``route(state) -> Stage`` that picks the next stage from
      ``state.stage`` (the stage that just ran) and the state's contents

``run_state_machine`` drives them. A handler exception is recorded on
``state.error`` and the route function is still consulted, so each
pipeline decides where errors go (every pipeline here routes them to
``END`` or to its finalize stage).
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Protocol, TypeVar

from autopilot.errors import describe_error

logger = logging.getLogger("autopilot.state_machine")

MAX_STEPS = 50


class PipelineState(Protocol):
    stage: Any
    error: Optional[str]
    history: List[str]


S = TypeVar("S", bound=PipelineState)
Handler = Callable[[Any], Awaitable[None]]


class StateMachineError(RuntimeError):
    """The routing function produced a stage with no handler or looped forever."""


async def run_state_machine(
    state: S,
    start: Any,
    end: Any,
    handlers: Mapping[Any, Handler],
    route: Callable[[S], Any],
    *,
    name: str = "pipeline",
    max_steps: int = MAX_STEPS,
) -> S:
    """Run stages from *start* until *route* yields *end*. Returns *state*."""
    stage = start
    steps = 0
    while stage != end:
        steps += 1
        if steps > max_steps:
            raise StateMachineError(f"{name} exceeded {max_steps} steps")
        handler = handlers.get(stage)
        if handler is None:
            raise StateMachineError(f"{name} has no handler for stage {stage}")

        state.stage = stage
        state.history.append(stage.value if hasattr(stage, "value") else str(stage))
        logger.debug("%s: entering %s", name, state.history[-1])
        try:
            await handler(state)
        except Exception as exc:
            state.error = describe_error(exc)
            logger.error("%s: stage %s failed: %s", name, state.history[-1], state.error)
        stage = route(state)
    return state
