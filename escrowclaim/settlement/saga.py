"""
Compensating-transaction runner.

A Saga is an ordered list of steps. Each step has an action and, optionally,
a compensation. Running the saga executes actions in order; when an action
raises, the compensations of every step that already completed run in
reverse order, and then the original exception is re-raised unchanged.

A failing compensation never replaces the original error. It is logged at
CRITICAL and recorded on the SagaOutcome / raised exception as
`compensation_failures`.

    saga = Saga("redeem:acct-1")
    saga.step("mark_claimed", mark, compensate=unmark)
    saga.step("authorize", authorize)
    saga.step("transfer", transfer)
    outcome = saga.run()
    outcome["transfer"]   # result of the transfer action
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class SagaStep:
    name:       str
    action:     Callable[[Dict[str, Any]], Any]
    compensate: Optional[Callable[[Dict[str, Any]], None]] = None


@dataclass
class SagaOutcome:
    results:   Dict[str, Any] = field(default_factory=dict)
    completed: List[str] = field(default_factory=list)

    def __getitem__(self, name: str) -> Any:
        return self.results[name]


class Saga:

    def __init__(self, name: str):
        self.name = name
        self.steps: List[SagaStep] = []

    def step(
        self,
        name: str,
        action: Callable[[Dict[str, Any]], Any],
        compensate: Optional[Callable[[Dict[str, Any]], None]] = None,
    ) -> "Saga":
        """
        Add a step. Actions and compensations receive the results dict of
        the steps completed so far.
        """
        if any(s.name == name for s in self.steps):
            raise ValueError(f"duplicate saga step {name!r}")
        self.steps.append(SagaStep(name, action, compensate))
        return self

    def run(self) -> SagaOutcome:
        outcome = SagaOutcome()
        done: List[SagaStep] = []
        for step in self.steps:
            try:
                outcome.results[step.name] = step.action(outcome.results)
            except Exception as exc:
                logger.error("[%s] step %s failed: %s", self.name, step.name, exc)
                failures = self._compensate(done, outcome.results)
                if failures:
                    # Attached for callers and tests; never raised in place of exc.
                    exc.compensation_failures = failures
                raise
            done.append(step)
            outcome.completed.append(step.name)
        return outcome

    def _compensate(self, done: List[SagaStep], results: Dict[str, Any]) -> List[Tuple[str, Exception]]:
        failures: List[Tuple[str, Exception]] = []
        for step in reversed(done):
            if step.compensate is None:
                continue
            try:
                step.compensate(results)
                logger.info("[%s] compensated %s", self.name, step.name)
            except Exception as comp_exc:
                logger.critical(
                    "[%s] compensation for %s FAILED: %s",
                    self.name, step.name, comp_exc, exc_info=True,
                )
                failures.append((step.name, comp_exc))
        return failures
