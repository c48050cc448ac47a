"""Coefficients, predictions, and residuals of fitted models.

A fitted :class:`~genetic_screens.mlm.Mlm` may carry one trailing row
and / or column holding a back-estimated sum-contrast level.  Those
entries are not part of the fitted design, so prediction must drop them:
pass ``x_sum=True`` / ``z_sum=True`` to exclude them.

New designs are reconciled with the model before use.  If the model
was fitted with an intercept and the new predictors lack one, it is
prepended; if the model has none and the new predictors do, it is
removed.  Each adjustment is reported as an :class:`InterceptAdjustment`
event to an optional caller-supplied ``sink`` and logged at DEBUG level;
neither is required for the result.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np

from .data import Predictors, RawData
from .exceptions import PreconditionError
from .mlm import Mlm

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InterceptAdjustment:
    """An intercept column added to or removed from caller-supplied data.

    Attributes:
        side: ``"X"`` or ``"Z"``.
        action: ``"added"`` or ``"removed"``.
        target: ``"new_predictors"`` (predict) or ``"new_data"`` (resid).
    """

    side: str
    action: str
    target: str


Sink = Callable[[InterceptAdjustment], None]


def coef(fit: Mlm, x_sum: bool = False, z_sum: bool = False) -> np.ndarray:
    """Coefficient matrix, optionally without back-estimated levels.

    Args:
        fit: Fitted model.
        x_sum: Drop the back-estimated ``X`` level (last row).
        z_sum: Drop the back-estimated ``Z`` level (last column).

    Returns:
        A copy of the selected block of ``B``.

    Raises:
        PreconditionError: If a side is dropped that was never
            back-estimated.
    """
    if x_sum and not fit.x_backest:
        raise PreconditionError("x_sum=True but no X level was back-estimated.")
    if z_sum and not fit.z_backest:
        raise PreconditionError("z_sum=True but no Z level was back-estimated.")
    rows = fit.B.shape[0] - int(x_sum)
    cols = fit.B.shape[1] - int(z_sum)
    return fit.B[:rows, :cols].copy()


def _reconcile(
    fit: Mlm,
    predictors: Predictors,
    target: str,
    sink: Sink | None,
) -> Predictors:
    wanted = fit.data.predictors
    reconciled = predictors.with_intercepts(wanted.x_intercept, wanted.z_intercept)
    for side, before, after in (
        ("X", predictors.x_intercept, reconciled.x_intercept),
        ("Z", predictors.z_intercept, reconciled.z_intercept),
    ):
        if before == after:
            continue
        event = InterceptAdjustment(side, "added" if after else "removed", target)
        logger.debug("%s %s intercept (%s).", event.action.capitalize(), side, target)
        if sink is not None:
            sink(event)
    return reconciled


def _check_shapes(X: np.ndarray, B: np.ndarray, Z: np.ndarray) -> None:
    if X.shape[1] != B.shape[0] or Z.shape[1] != B.shape[1]:
        raise PreconditionError(
            f"Design shapes X {X.shape} and Z {Z.shape} do not match "
            f"coefficients {B.shape}; pass x_sum / z_sum to drop "
            f"back-estimated levels."
        )


def predict(
    fit: Mlm,
    new_predictors: Predictors | None = None,
    *,
    x_sum: bool = False,
    z_sum: bool = False,
    sink: Sink | None = None,
) -> np.ndarray:
    """Predictions ``X_new B Z_newᵗ``.

    Args:
        fit: Fitted model.
        new_predictors: Predictors to predict for; defaults to the
            fitted ones.
        x_sum: Exclude the back-estimated ``X`` level.
        z_sum: Exclude the back-estimated ``Z`` level.
        sink: Optional callable receiving :class:`InterceptAdjustment`
            events.

    Returns:
        Prediction matrix ``(n_new, m_new)``.
    """
    if new_predictors is None:
        new_predictors = fit.data.predictors
    predictors = _reconcile(fit, new_predictors, "new_predictors", sink)
    B = coef(fit, x_sum, z_sum)
    _check_shapes(predictors.X, B, predictors.Z)
    return predictors.X @ B @ predictors.Z.T


def fitted(
    fit: Mlm,
    *,
    x_sum: bool = False,
    z_sum: bool = False,
) -> np.ndarray:
    """Fitted values of the model on its own predictors."""
    return predict(fit, x_sum=x_sum, z_sum=z_sum)


def resid(
    fit: Mlm,
    new_data: RawData | None = None,
    *,
    x_sum: bool = False,
    z_sum: bool = False,
    sink: Sink | None = None,
) -> np.ndarray:
    """Residuals ``Y − X B Zᵗ``.

    Args:
        fit: Fitted model.
        new_data: Dataset to compute residuals for; defaults to the
            fitted one.
        x_sum: Exclude the back-estimated ``X`` level.
        z_sum: Exclude the back-estimated ``Z`` level.
        sink: Optional callable receiving :class:`InterceptAdjustment`
            events.

    Returns:
        Residual matrix, same shape as ``new_data.Y``.
    """
    if new_data is None:
        new_data = fit.data
    predictors = _reconcile(fit, new_data.predictors, "new_data", sink)
    # Row / column predictor counts follow the reconciled matrices.
    data = RawData(new_data.Y, predictors)
    B = coef(fit, x_sum, z_sum)
    _check_shapes(data.X, B, data.Z)
    return data.Y - data.X @ B @ data.Z.T


__all__ = ["InterceptAdjustment", "coef", "fitted", "predict", "resid"]
