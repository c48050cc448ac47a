"""Worker configuration for the genetic_screens package.

Controls how many joblib workers the permutation engine uses when the
caller does not pass ``n_jobs`` explicitly.

Resolution order (first match wins):
    1. Programmatic override via :func:`set_n_jobs`.
    2. The ``GENETIC_SCREENS_N_JOBS`` environment variable.
    3. ``1`` (sequential).

Values follow the joblib convention: a positive integer is a worker
count, ``-1`` means "all cores", ``-2`` all but one, and so on.  Zero
is never valid.

Examples:
    Use every core from the shell::

        export GENETIC_SCREENS_N_JOBS=-1

    Use four workers programmatically::

        import genetic_screens
        genetic_screens.set_n_jobs(4)

    Restore the default resolution order::

        genetic_screens.set_n_jobs(None)
"""

from __future__ import annotations

import os
import warnings

_ENV_VAR = "GENETIC_SCREENS_N_JOBS"

# Sentinel indicating "no programmatic override has been set".
_n_jobs_override: int | None = None


def _validate_n_jobs(value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"n_jobs must be an integer, got {value!r}.")
    if value == 0:
        raise ValueError("n_jobs must be nonzero (use -1 for all cores).")
    return value


def get_n_jobs() -> int:
    """Return the default worker count for permutation runs.

    Resolution order:
        1. Value set by :func:`set_n_jobs`.
        2. ``GENETIC_SCREENS_N_JOBS`` environment variable.
        3. ``1``.

    Returns:
        A nonzero joblib ``n_jobs`` value.
    """
    # 1. Programmatic override
    if _n_jobs_override is not None:
        return _n_jobs_override

    # 2. Environment variable
    env = os.environ.get(_ENV_VAR, "").strip()
    if env:
        try:
            return _validate_n_jobs(int(env))
        except ValueError:
            warnings.warn(
                f"Ignoring invalid {_ENV_VAR}={env!r}; expected a nonzero "
                f"integer.  Falling back to n_jobs=1.",
                UserWarning,
                stacklevel=2,
            )

    # 3. Default
    return 1


def set_n_jobs(n_jobs: int | None) -> None:
    """Override the default worker count.

    Args:
        n_jobs: A nonzero integer, or ``None`` to restore the default
            resolution order.

    Raises:
        ValueError: If *n_jobs* is zero or not an integer.
    """
    global _n_jobs_override
    if n_jobs is None:
        _n_jobs_override = None
        return
    _n_jobs_override = _validate_n_jobs(n_jobs)


def resolve_n_jobs(n_jobs: int | None) -> int:
    """Return *n_jobs* if given, else the configured default."""
    if n_jobs is None:
        return get_n_jobs()
    return _validate_n_jobs(n_jobs)
