"""Error taxonomy for the genetic_screens package.

Every failure surfaces synchronously as one of three categories:

* :class:`PreconditionError` — the caller asked for something the
  inputs cannot support (missing intercept, mismatched dimensions,
  intercept column in S-score indicators, invalid configuration).
  Subclasses :class:`ValueError` so generic handlers keep working.
* :class:`DegenerateDataError` — the inputs are well formed but the
  numbers are not (singular cross products, empty or single-replicate
  condition × clone cells, non-finite results).  These are never
  converted into NaN / Inf silently.
* :class:`PermutationTrialError` — one permutation trial failed; the
  whole permutation run is aborted so that counts stay well defined.
"""

from __future__ import annotations


class GeneticScreensError(Exception):
    """Base class for all errors raised by genetic_screens."""


class PreconditionError(GeneticScreensError, ValueError):
    """Invalid call: the request is not defined for the given inputs."""


class DegenerateDataError(GeneticScreensError, ArithmeticError):
    """The data do not support the requested computation."""


class PermutationTrialError(GeneticScreensError, RuntimeError):
    """A single permutation trial failed and aborted the run.

    Attributes:
        trial: Zero-based index of the failing trial, or ``None`` when
            the failure cannot be attributed to one trial.
    """

    def __init__(self, message: str, trial: int | None = None) -> None:
        super().__init__(message)
        self.trial = trial


__all__ = [
    "DegenerateDataError",
    "GeneticScreensError",
    "PermutationTrialError",
    "PreconditionError",
]
