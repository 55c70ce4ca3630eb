from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union


@dataclass
class ReplyStep:
    """Step descriptor for the reply pipeline runner."""
    name: str
    fn: Callable[[object], Union[None, Awaitable[None]]]
    skip_if: Optional[Callable[[object], bool]] = None


class ReplyPipeline:
    """Ordered step runner that processes one assistant reply."""

    def __init__(self, steps: list[ReplyStep]) -> None:
        """Purpose: Hold the reply-processing steps in the order they must run.
        Inputs/Outputs: Input is the ordered ReplyStep list; no return value.
        Side Effects / State: Keeps a reference to the list; steps run only in run().
        Dependencies: ReplyStep.
        Failure Modes: None here; a non-callable step fails when run() reaches it.
        If Removed: Replies are never normalized, enriched or executed.
        Testing Notes: step_names mirrors the order given here.
        """
        self._steps = steps

    @property
    def step_names(self) -> list[str]:
        return [step.name for step in self._steps]

    async def run(self, context: object) -> None:
        """Purpose: Push one reply context through every step in turn.
        Inputs/Outputs: Input is the reply context the steps share; no return value.
        Side Effects / State: Whatever the steps do to the context and collaborators.
        Dependencies: ReplyStep.fn may be a plain function or return an awaitable.
        Failure Modes: A step exception stops the run and reaches the caller.
        If Removed: The dispatcher cannot turn a reply into a message.
        Testing Notes: Mix sync and async steps and verify skip_if.
        """
        # Coroutine results are awaited before the next step starts.
        for step in self._steps:
            if step.skip_if and step.skip_if(context):
                continue
            result = step.fn(context)
            if result is not None:
                await result
