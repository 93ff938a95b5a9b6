from __future__ import annotations

from dataclasses import dataclass, replace
import logging
import random
import time
from typing import Callable, Iterator, Protocol, TypeVar

from urllib3.exceptions import HTTPError as Urllib3HTTPError

from .models import InconsistentStatusError, Phase

logger = logging.getLogger(__name__)


class PhasedResource(Protocol):
    @property
    def phase(self) -> Phase: ...

    @property
    def error_message(self) -> str: ...


R = TypeVar("R", bound=PhasedResource)


@dataclass(frozen=True)
class BackoffPolicy:
    """Bounded retry schedule: ``steps`` attempts separated by growing delays."""

    duration_seconds: float = 10.0
    factor: float = 1.0
    jitter: float = 0.1
    steps: int = 5
    cap_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.steps < 1:
            raise ValueError("steps must be at least 1")
        if self.duration_seconds < 0:
            raise ValueError("duration_seconds must be >= 0")
        if self.factor < 1.0:
            raise ValueError("factor must be >= 1.0")
        if self.jitter < 0:
            raise ValueError("jitter must be >= 0")
        if self.cap_seconds is not None and self.cap_seconds < 0:
            raise ValueError("cap_seconds must be >= 0")

    def with_steps(self, steps: int) -> BackoffPolicy:
        return replace(self, steps=steps)

    def delays(self) -> Iterator[float]:
        """Yield the ``steps - 1`` pauses taken between attempts."""
        delay = self.duration_seconds
        for _ in range(self.steps - 1):
            if self.cap_seconds is not None:
                delay = min(delay, self.cap_seconds)
            pause = delay
            if self.jitter > 0:
                pause += random.random() * self.jitter * delay
            yield pause
            delay *= self.factor


DEFAULT_RETRY = BackoffPolicy()


def default_retry_with_duration(seconds: float) -> BackoffPolicy:
    return replace(DEFAULT_RETRY, duration_seconds=seconds)


class TransientObservationError(RuntimeError):
    """A read against the control plane failed in a way worth retrying."""


class WaitError(RuntimeError):
    """Base class for the ways a wait can end without reaching its target."""


class OperationFailedError(WaitError):
    """The observed resource reached a terminal failure phase."""

    def __init__(self, *, name: str, phase: Phase, detail: str) -> None:
        suffix = f": {detail}" if detail else ""
        super().__init__(f"{name} entered failure phase {phase}{suffix}")
        self.name = name
        self.phase = phase
        self.detail = detail


class PhaseUnreachableError(WaitError):
    """The resource finished successfully in a phase other than the one waited for."""

    def __init__(self, *, name: str, phase: Phase, target: Phase) -> None:
        super().__init__(f"{name} reached terminal phase {phase} and can no longer reach {target}")
        self.name = name
        self.phase = phase
        self.target = target


class WaitTimeoutError(WaitError, TimeoutError):
    """The retry budget ran out before the condition was met."""

    def __init__(
        self,
        *,
        description: str,
        attempts: int,
        last_phase: Phase | None = None,
        last_error: Exception | None = None,
    ) -> None:
        details = [f"after {attempts} attempts"]
        if last_phase is not None:
            details.append(f"last observed phase={last_phase}")
        if last_error is not None:
            details.append(f"last error={_error_message(last_error)}")
        super().__init__(f"timed out waiting for {description} ({'; '.join(details)})")
        self.attempts = attempts
        self.last_phase = last_phase
        self.last_error = last_error


def is_transient_error(error: Exception) -> bool:
    # A status caught between two partial writes settles on a later read.
    return isinstance(
        error,
        (TransientObservationError, InconsistentStatusError, ConnectionError, TimeoutError, Urllib3HTTPError),
    )


def wait_for_phase(
    resolve: Callable[[str], R],
    name: str,
    target_phase: Phase,
    policy: BackoffPolicy,
    *,
    is_transient: Callable[[Exception], bool] = is_transient_error,
) -> R:
    """Poll ``resolve(name)`` until the resource is in ``target_phase``.

    Returns the observed resource, which is always in ``target_phase``.

    Raises:
        OperationFailedError: a failure phase was observed. No further polls
            are made.
        PhaseUnreachableError: a successful terminal phase other than the
            target was observed.
        WaitTimeoutError: all ``policy.steps`` observations were spent. Reads
            that failed with a transient error count as spent observations.

    Non-transient errors raised by ``resolve`` propagate unchanged.
    """
    if not isinstance(target_phase, Phase):
        raise TypeError(f"target_phase must be a Phase member, got {target_phase!r}")

    delays = policy.delays()
    last_phase: Phase | None = None
    last_error: Exception | None = None

    for attempt in range(1, policy.steps + 1):
        try:
            resource = resolve(name)
        except Exception as error:  # pylint: disable=broad-except
            if not is_transient(error):
                raise
            last_error = error
            logger.warning(
                "transient error observing %s (attempt %d/%d): %s",
                name,
                attempt,
                policy.steps,
                _error_message(error),
            )
        else:
            last_phase = resource.phase
            last_error = None
            if resource.phase is target_phase:
                return resource
            if resource.phase.is_failure():
                raise OperationFailedError(name=name, phase=resource.phase, detail=resource.error_message)
            if resource.phase.is_terminal():
                raise PhaseUnreachableError(name=name, phase=resource.phase, target=target_phase)
            logger.debug(
                "%s in phase %s, waiting for %s (attempt %d/%d)",
                name,
                resource.phase,
                target_phase,
                attempt,
                policy.steps,
            )

        if attempt < policy.steps:
            time.sleep(next(delays))

    raise WaitTimeoutError(
        description=f"{name} to reach phase {target_phase}",
        attempts=policy.steps,
        last_phase=last_phase,
        last_error=last_error,
    )


def retry(
    policy: BackoffPolicy,
    condition: Callable[[], bool],
    *,
    description: str = "condition",
    is_transient: Callable[[Exception], bool] = is_transient_error,
) -> None:
    """Call ``condition`` until it returns true or the budget is spent."""
    delays = policy.delays()
    last_error: Exception | None = None

    for attempt in range(1, policy.steps + 1):
        try:
            if condition():
                return
            last_error = None
        except Exception as error:  # pylint: disable=broad-except
            if not is_transient(error):
                raise
            last_error = error
            logger.warning("transient error checking %s: %s", description, _error_message(error))

        if attempt < policy.steps:
            time.sleep(next(delays))

    raise WaitTimeoutError(description=description, attempts=policy.steps, last_error=last_error)


def _error_message(error: Exception) -> str:
    message = str(error).strip()
    return message or error.__class__.__name__
