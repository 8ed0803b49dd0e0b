from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Generic, TypeVar

from relorch.core.result import Err, Ok, Result
from relorch.release.errors import ReleaseError

S = TypeVar("S")


@dataclass(frozen=True, slots=True)
class StepAdvance(Generic[S]):
    state: S


@dataclass(frozen=True, slots=True)
class StepFinish(Generic[S]):
    state: S


@dataclass(frozen=True, slots=True)
class StepFailure(Generic[S]):
    """A handler error, with the state it happened in."""

    state: S
    error: ReleaseError


StepOutcome = StepAdvance[S] | StepFinish[S]
StepHandler = Callable[[S], Result[StepOutcome[S], ReleaseError]]
SaveState = Callable[[S], None]
GetStep = Callable[[S], str]
Interrupt = Callable[[S], ReleaseError | None]


def advance(state: S) -> StepAdvance[S]:
    return StepAdvance(state=state)


def finish(state: S) -> StepFinish[S]:
    return StepFinish(state=state)


def run_state_machine(
    *,
    initial_state: S,
    get_step: GetStep[S],
    handlers: Mapping[str, StepHandler[S]],
    save_state: SaveState[S],
    interrupt: Interrupt[S] | None = None,
) -> Result[S, StepFailure[S]]:
    """Drive ``handlers`` from ``initial_state`` until one finishes or fails.

    ``interrupt`` is consulted before every step; returning an error stops
    the machine in that state without running the step. ``save_state`` sees
    every state entered after a successful step.
    """
    current = initial_state

    while True:
        step = get_step(current)

        if interrupt is not None:
            stop = interrupt(current)
            if stop is not None:
                return Err(StepFailure(state=current, error=stop))

        handler = handlers.get(step)
        if handler is None:
            return Err(
                StepFailure(
                    state=current,
                    error=ReleaseError(
                        kind="invalid_input", message=f"unknown pipeline step: {step}"
                    ),
                )
            )

        outcome = handler(current)
        if isinstance(outcome, Err):
            return Err(StepFailure(state=current, error=outcome.error))

        current = outcome.value.state
        if isinstance(outcome.value, StepFinish):
            return Ok(current)

        save_state(current)
