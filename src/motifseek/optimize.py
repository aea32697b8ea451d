"""
optimize
========

Termination-condition policy and a thin wrapper around
:func:`scipy.optimize.minimize` that maximizes an objective exposing
``value_and_gradient``.

Conditions are checked after every optimizer iteration; the first one that
holds stops the run. Stopping on a budget rather than on convergence is not an
error: the last iterate is returned together with ``converged=False``.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.optimize import minimize

logger = logging.getLogger(__name__)


class TerminationCondition(ABC):
    """Decides after each iteration whether the optimization should stop."""

    #: True if stopping because of this condition means convergence
    converging = False

    def reset(self) -> None:
        """Prepare for a new optimization run."""

    @abstractmethod
    def should_stop(self, iteration: int, previous: float, current: float) -> bool:
        pass


class IterationCondition(TerminationCondition):
    """Stop after a fixed number of iterations."""

    def __init__(self, max_iterations: int):
        if max_iterations <= 0:
            raise ValueError(f"max_iterations must be positive, got {max_iterations}")
        self.max_iterations = max_iterations

    def should_stop(self, iteration: int, previous: float, current: float) -> bool:
        return iteration >= self.max_iterations


class SmallDifferenceCondition(TerminationCondition):
    """Stop when the objective changed by less than ``epsilon``."""

    converging = True

    def __init__(self, epsilon: float):
        if epsilon <= 0:
            raise ValueError(f"epsilon must be positive, got {epsilon}")
        self.epsilon = epsilon

    def should_stop(self, iteration: int, previous: float, current: float) -> bool:
        return abs(previous - current) < self.epsilon


class MultipleIterationsCondition(TerminationCondition):
    """Stop when ``condition`` held for ``n`` consecutive iterations."""

    def __init__(self, n: int, condition: TerminationCondition):
        if n <= 0:
            raise ValueError(f"n must be positive, got {n}")
        self.n = n
        self.condition = condition
        self.converging = condition.converging
        self._streak = 0

    def reset(self) -> None:
        self._streak = 0
        self.condition.reset()

    def should_stop(self, iteration: int, previous: float, current: float) -> bool:
        if self.condition.should_stop(iteration, previous, current):
            self._streak += 1
        else:
            self._streak = 0
        return self._streak >= self.n


class TimeCondition(TerminationCondition):
    """Stop once a wall-clock budget (seconds) is used up."""

    def __init__(self, seconds: float):
        if seconds <= 0:
            raise ValueError(f"seconds must be positive, got {seconds}")
        self.seconds = seconds
        self._started = time.monotonic()

    def reset(self) -> None:
        self._started = time.monotonic()

    def should_stop(self, iteration: int, previous: float, current: float) -> bool:
        return time.monotonic() - self._started >= self.seconds


class CombinedCondition(TerminationCondition):
    """Stop as soon as any of the wrapped conditions holds."""

    def __init__(self, *conditions: TerminationCondition):
        if not conditions:
            raise ValueError("at least one condition is required")
        self.conditions = conditions
        self.triggered: Optional[TerminationCondition] = None

    def reset(self) -> None:
        self.triggered = None
        for condition in self.conditions:
            condition.reset()

    def should_stop(self, iteration: int, previous: float, current: float) -> bool:
        # every condition sees every iteration so that streaks stay consistent
        stops = [c.should_stop(iteration, previous, current) for c in self.conditions]
        for condition, stop in zip(self.conditions, stops):
            if stop:
                self.triggered = condition
                return True
        return False

    @property
    def converging(self) -> bool:
        return self.triggered is not None and self.triggered.converging


def default_condition(
    max_iterations: int = 100, epsilon: float = 1e-4, window: int = 5, time_budget: Optional[float] = None
) -> CombinedCondition:
    """Small improvement over ``window`` consecutive iterations, an iteration cap and an optional time budget."""
    conditions = [
        MultipleIterationsCondition(window, SmallDifferenceCondition(epsilon)),
        IterationCondition(max_iterations),
    ]
    if time_budget is not None:
        conditions.append(TimeCondition(time_budget))
    return CombinedCondition(*conditions)


@dataclass
class OptimizationResult:
    """Outcome of one optimization run."""

    x: np.ndarray
    value: float
    iterations: int
    converged: bool
    message: str


def maximize(
    objective,
    x0: np.ndarray,
    condition: TerminationCondition,
    method: str = "CG",
    gtol: float = 1e-8,
) -> OptimizationResult:
    """Maximize ``objective`` from ``x0`` with a gradient-based scipy method.

    ``objective`` must provide ``value_and_gradient(x)``. The final parameters
    are loaded into the objective before returning.
    """
    condition.reset()
    state = {"iteration": 0, "previous": None, "stopped": False}

    def negated(x):
        value, grad = objective.value_and_gradient(x)
        if not np.isfinite(value):
            return np.inf, np.zeros_like(x)
        return -value, -grad

    def callback(intermediate_result):
        current = -float(intermediate_result.fun)
        previous = state["previous"]
        state["iteration"] += 1
        state["previous"] = current
        if previous is not None and condition.should_stop(state["iteration"], previous, current):
            state["stopped"] = True
            raise StopIteration

    x0 = np.asarray(x0, dtype=np.float64)
    state["previous"] = -negated(x0)[0]
    result = minimize(
        negated,
        x0,
        jac=True,
        method=method,
        callback=callback,
        options={"maxiter": 100000, "gtol": gtol},
    )

    x = np.asarray(result.x, dtype=np.float64)
    value, _ = objective.value_and_gradient(x)
    converged = bool(result.success) or (state["stopped"] and condition.converging)
    logger.debug(
        f"Optimization finished after {state['iteration']} iterations: value={value:.6f}, "
        f"converged={converged} ({result.message})"
    )
    return OptimizationResult(x=x, value=value, iterations=state["iteration"], converged=converged, message=str(result.message))
