"""Input compatibility layer for matrix-valued arguments.

Plate responses and design matrices usually arrive as NumPy arrays or
pandas DataFrames.  This module converts them to contiguous ``float64``
arrays at the boundary so that internal code only ever sees NumPy.
Polars DataFrames (and LazyFrames) are accepted too when Polars is
installed; it is **not** a required dependency.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeAlias

import numpy as np
import pandas as pd

from .exceptions import PreconditionError

if TYPE_CHECKING:
    import polars as pl

    MatrixLike: TypeAlias = np.ndarray | pd.DataFrame | pl.DataFrame | pl.LazyFrame
else:
    MatrixLike: TypeAlias = np.ndarray | pd.DataFrame

# Polars is optional.
try:
    import polars as pl

    _HAS_POLARS = True
except ImportError:
    _HAS_POLARS = False


def _ensure_matrix(obj: Any, *, name: str = "input") -> np.ndarray:
    """Convert *obj* to a two-dimensional ``float64`` array.

    Accepted types:
        * ``numpy.ndarray`` — 1-D arrays become a single column.
        * ``pandas.DataFrame`` / ``pandas.Series`` — via ``.to_numpy()``.
        * ``polars.DataFrame`` / ``polars.LazyFrame`` — collected and
          converted when Polars is installed.
        * Nested lists of numbers.

    Args:
        obj: Matrix-like input.
        name: Label used in error messages (e.g. ``"X"`` or ``"Y"``).

    Returns:
        A new ``float64`` array of shape ``(rows, cols)``.

    Raises:
        TypeError: If *obj* is not a recognised matrix type.
        PreconditionError: If the input has more than two dimensions,
            is empty, or contains NaN / Inf.
    """
    if _HAS_POLARS:
        if isinstance(obj, pl.LazyFrame):
            obj = obj.collect()
        if isinstance(obj, pl.DataFrame):
            obj = obj.to_numpy()

    if isinstance(obj, (pd.DataFrame, pd.Series)):
        obj = obj.to_numpy()

    if not isinstance(obj, (np.ndarray, list, tuple)):
        raise TypeError(
            f"'{name}' must be a NumPy array or pandas DataFrame"
            + (" (or Polars DataFrame/LazyFrame)" if _HAS_POLARS else "")
            + f", got {type(obj).__name__}."
        )

    try:
        arr = np.array(obj, dtype=float)
    except (TypeError, ValueError) as exc:
        raise TypeError(f"'{name}' must contain only numeric values.") from exc

    if arr.ndim == 1:
        arr = arr[:, np.newaxis]
    if arr.ndim != 2:
        raise PreconditionError(f"'{name}' must be two-dimensional, got ndim={arr.ndim}.")
    if arr.size == 0:
        raise PreconditionError(f"'{name}' is empty (shape {arr.shape}).")
    if not np.all(np.isfinite(arr)):
        raise PreconditionError(f"'{name}' contains NaN or infinite values.")
    return arr
