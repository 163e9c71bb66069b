"""
Side-effect requests emitted by pipelines and the adapter that runs them.

Pipelines do not finalize runs or send notifications from inside their
error handlers. They return an ordered list of ``SideEffect`` requests and
``EffectRunner.execute`` applies them in order. Finalizing a run that is
already terminal is a no-op, so a list can be replayed safely.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from autopilot.datastore import Datastore
from autopilot.errors import NotFoundError

logger = logging.getLogger("autopilot.effects")


@dataclass(frozen=True)
class CompleteRun:
    run_id: str
    result: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FailRun:
    run_id: str
    error: str
    result: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Notify:
    account_id: str
    subject: str
    message: str
    level: str = "error"


SideEffect = Union[CompleteRun, FailRun, Notify]
Notifier = Callable[[Notify], None]


def log_notifier(effect: Notify) -> None:
    """Default notifier: write the notification to the log."""
    log = logger.error if effect.level == "error" else logger.info
    log("[%s] %s: %s", effect.account_id, effect.subject, effect.message)


def finalize_effects(
    run_id: str,
    account_id: str,
    pipeline: str,
    result: Dict[str, Any],
    error: Optional[str],
) -> List[SideEffect]:
    """Effects closing out one run: completion, or failure plus notification."""
    if error:
        return [
            FailRun(run_id=run_id, error=error, result=result),
            Notify(
                account_id=account_id,
                subject=f"{pipeline} run failed",
                message=error,
            ),
        ]
    return [CompleteRun(run_id=run_id, result=result)]


class EffectRunner:
    """Applies side-effect requests against the datastore and notifier."""

    def __init__(self, datastore: Datastore, notifier: Notifier = log_notifier) -> None:
        self.datastore = datastore
        self.notifier = notifier

    def execute(self, effects: Sequence[SideEffect]) -> None:
        for effect in effects:
            if isinstance(effect, (CompleteRun, FailRun)):
                self._finalize(effect)
            elif isinstance(effect, Notify):
                self.notifier(effect)
            else:
                raise TypeError(f"Unknown side effect {effect!r}")

    def _finalize(self, effect: Union[CompleteRun, FailRun]) -> None:
        try:
            run = self.datastore.get_run(effect.run_id)
        except NotFoundError:
            logger.warning("Cannot finalize missing run %s", effect.run_id)
            return
        if run.is_terminal:
            logger.debug("Run %s already %s, skipping", effect.run_id[:8], run.status)
            return
        if isinstance(effect, CompleteRun):
            self.datastore.complete_run(effect.run_id, effect.result)
        else:
            self.datastore.update_run(
                effect.run_id,
                status="failed",
                error=effect.error,
                result=effect.result,
            )
