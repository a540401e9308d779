"""
Saga runner - multi-store operations as ordered, named steps.

Each step is tagged FATAL or BEST_EFFORT:

    FATAL        runs inline; an error aborts the remaining steps and
                 propagates. Steps already committed are not undone.
    BEST_EFFORT  dispatched to BackgroundTasks and never awaited; its failure
                 is logged only.

`residue` records what a committed step leaves behind when a later fatal
step aborts, so the accepted inconsistency windows are visible in the step
table and in the abort log.

Example::

    saga = Saga("dataset.create", [
        SagaStep("insert_metadata", insert_step, residue="..."),
        SagaStep("create_graph_node", graph_step, StepPolicy.BEST_EFFORT),
    ], background)
    context = await saga.run({"owner": identity})
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from datec.errors import UpstreamStoreError
from .background import BackgroundTasks

logger = logging.getLogger(__name__)

SagaContext = Dict[str, Any]


class StepPolicy(str, Enum):
    FATAL = "fatal"
    BEST_EFFORT = "best_effort"


@dataclass(frozen=True)
class SagaStep:
    name: str
    action: Callable[[SagaContext], Awaitable[Any]]
    policy: StepPolicy = StepPolicy.FATAL
    residue: str = ""

    @property
    def is_best_effort(self) -> bool:
        return self.policy is StepPolicy.BEST_EFFORT


class Saga:
    """An ordered list of steps sharing one context dict"""

    def __init__(self, name: str, steps: Sequence[SagaStep], background: BackgroundTasks):
        self.name = name
        self.steps = tuple(steps)
        self.background = background

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self.steps]

    def policy_of(self, step_name: str) -> StepPolicy:
        for step in self.steps:
            if step.name == step_name:
                return step.policy
        raise KeyError(step_name)

    async def run(self, context: Optional[SagaContext] = None,
                  timeout: Optional[float] = None) -> SagaContext:
        """
        Execute the steps in order.

        A timeout cancels the remaining inline steps only; best-effort work
        already dispatched keeps running. It surfaces as UpstreamStoreError.
        """
        context = context if context is not None else {}
        committed: List[SagaStep] = []
        if timeout is None:
            return await self._run(context, committed)
        try:
            return await asyncio.wait_for(self._run(context, committed), timeout)
        except asyncio.TimeoutError:
            error = UpstreamStoreError(self.name, "saga", f"timeout after {timeout}s")
            self._log_abort(self._pending_step(committed), committed, error)
            raise error from None

    def _pending_step(self, committed: List[SagaStep]) -> SagaStep:
        inline = [step for step in self.steps if not step.is_best_effort]
        return inline[len(committed)] if len(committed) < len(inline) else inline[-1]

    async def _run(self, context: SagaContext, committed: List[SagaStep]) -> SagaContext:
        for step in self.steps:
            if step.is_best_effort:
                self.background.spawn(step.action(context), name=f"{self.name}.{step.name}")
                continue

            try:
                await step.action(context)
            except Exception as e:
                self._log_abort(step, committed, e)
                raise
            committed.append(step)
        return context

    def _log_abort(self, failed: SagaStep, committed: List[SagaStep], error: Exception):
        if isinstance(error, UpstreamStoreError):
            logger.error(f"❌ Saga {self.name} aborted at {failed.name}: {error}")
        else:
            logger.info(f"Saga {self.name} rejected at {failed.name}: {error}")
        for step in committed:
            if step.residue:
                logger.warning(f"   {self.name}.{step.name} left: {step.residue}")
