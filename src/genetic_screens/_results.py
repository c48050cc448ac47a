"""Typed result objects for permutation runs.

:class:`PermutationResult` is a frozen dataclass that provides:

* **Attribute access** — ``result.statistic``, ``result.p_values``.
* **Tuple unpacking** — ``S, pvals = s_score_perms(...)`` yields the
  observed statistic and its p-values, in that order.
* **Dict-like access** — ``result["p_values"]``, ``result.get("key")``,
  ``"key" in result``.
* **Serialisation** — ``.to_dict()`` returns a plain ``dict[str, Any]``
  with all NumPy types converted to native Python.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, fields
from typing import Any

import numpy as np

# ------------------------------------------------------------------ #
# Serialisation helper
# ------------------------------------------------------------------ #


def _numpy_to_python(obj: Any) -> Any:
    """Recursively convert NumPy scalars/arrays to Python-native types."""
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (np.integer, np.bool_)):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, dict):
        return {k: _numpy_to_python(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return type(obj)(_numpy_to_python(item) for item in obj)
    return obj


# ------------------------------------------------------------------ #
# Dict-compatibility mixin
# ------------------------------------------------------------------ #


class _DictAccessMixin:
    """Dict-like access for result dataclasses."""

    def __getitem__(self, key: str) -> Any:
        try:
            return getattr(self, key)
        except AttributeError:
            raise KeyError(key) from None

    def get(self, key: str, default: Any = None) -> Any:
        return getattr(self, key, default)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        return key in {f.name for f in fields(self)}  # type: ignore[arg-type]

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serialisable dictionary."""
        return {
            f.name: _numpy_to_python(getattr(self, f.name))
            for f in fields(self)  # type: ignore[arg-type]
        }


# ------------------------------------------------------------------ #
# PermutationResult
# ------------------------------------------------------------------ #


@dataclass(frozen=True, eq=False)
class PermutationResult(_DictAccessMixin):
    """Observed statistic and its empirical p-values.

    Attributes:
        statistic: Statistic computed on the real data.
        p_values: Phipson–Smyth p-values, same shape as ``statistic``.
        counts: Per-cell number of permuted statistics with
            ``|T*| >= |T|``.
        n_permutations: Number of permutation trials B.
        perm_axis: Axis of ``Y`` that was shuffled (``0`` rows, ``1``
            columns), or ``None`` for a custom permutation function.
        random_state: Seed the permutation plan was drawn from.
    """

    statistic: np.ndarray
    p_values: np.ndarray
    counts: np.ndarray
    n_permutations: int
    perm_axis: int | None = None
    random_state: int | None = None

    def __iter__(self) -> Iterator[np.ndarray]:
        yield self.statistic
        yield self.p_values


__all__ = ["PermutationResult"]
