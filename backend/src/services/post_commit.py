"""
Post-commit side effects.

After a booking or cancellation is durably written, several follow-ups run
(usage counting, calendar sync, cache invalidation, notifications). They run
one after another, each isolated: a failure is logged with its stage label and
the next task still runs. Nothing here can fail the request.
"""

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Union

logger = logging.getLogger(__name__)

TaskFunc = Callable[[], Union[Awaitable[Any], Any]]


@dataclass
class TaskOutcome:
    stage: str
    ok: bool
    error: str = ""


@dataclass
class PostCommitTasks:
    """Ordered list of fault-isolated follow-up tasks."""

    context: str
    tasks: List[tuple] = field(default_factory=list)

    def add(self, stage: str, func: TaskFunc) -> "PostCommitTasks":
        self.tasks.append((stage, func))
        return self

    async def run(self) -> List[TaskOutcome]:
        outcomes: List[TaskOutcome] = []
        for stage, func in self.tasks:
            try:
                result = func()
                if inspect.isawaitable(result):
                    await result
                outcomes.append(TaskOutcome(stage, True))
                logger.debug(f"[{self.context}] {stage} succeeded", extra={"stage": stage})
            except Exception as e:
                logger.exception(
                    f"[{self.context}] {stage} failed: {e}",
                    extra={"stage": stage},
                )
                outcomes.append(TaskOutcome(stage, False, str(e)))
        return outcomes
