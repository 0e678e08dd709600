# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import numpy as np
import pandas as pd
import declimb.common.typing as tp
from declimb.common import errors
from .legality import Bounds


class CorrelationReport:
    """Local shape of the criterion around the best candidate, estimated through
    finite differences of the criterion.
    The negative inverse of the Hessian is used as a covariance of the parameters:
    large standard deviations indicate parameters to which the criterion is
    insensitive, and strong correlations indicate parameters which compensate each other.

    Attributes
    ----------
    best: np.ndarray
        best parameters
    stddev: np.ndarray
        estimated standard deviation of each parameter
    correlations: np.ndarray
        estimated correlation matrix of the parameters
    sensitivities: np.ndarray
        curvatures of the criterion along its principal directions, in decreasing order
    directions: np.ndarray
        principal directions (as columns), matching the sensitivities
    num_evaluations: int
        number of calls to the criterion used for the estimation
    """

    def __init__(
        self,
        best: np.ndarray,
        stddev: np.ndarray,
        correlations: np.ndarray,
        sensitivities: np.ndarray,
        directions: np.ndarray,
        num_evaluations: int,
    ) -> None:
        self.best = best
        self.stddev = stddev
        self.correlations = correlations
        self.sensitivities = sensitivities
        self.directions = directions
        self.num_evaluations = num_evaluations

    @property
    def names(self) -> tp.List[str]:
        return [f"x{k}" for k in range(self.best.size)]

    def to_dataframe(self) -> pd.DataFrame:
        """Best value, standard deviation and correlations of each parameter (as rows)"""
        df = pd.DataFrame(self.correlations, index=self.names, columns=self.names)
        df.insert(0, "stddev", self.stddev)
        df.insert(0, "best", self.best)
        return df

    def __str__(self) -> str:
        with pd.option_context("display.float_format", "{:.4f}".format):
            table = str(self.to_dataframe())
        sensitivities = " ".join(f"{s:.4g}" for s in self.sensitivities)
        return f"Parameter correlations ({self.num_evaluations} evaluations)\n{table}\nSensitivities: {sensitivities}"


def finite_difference_steps(bounds: Bounds, fraction: float = 0.01) -> np.ndarray:
    """Step of each parameter for estimating derivatives: a fraction of its range,
    and at least one unit for integer parameters.
    """
    steps = fraction * bounds.span
    ints = slice(0, bounds.nints)
    steps[ints] = np.maximum(1.0, np.round(steps[ints]))
    return steps


def hessian(
    func: tp.Callable[[np.ndarray], float], center: np.ndarray, steps: np.ndarray
) -> tp.Tuple[np.ndarray, tp.List[float]]:
    """Central finite difference estimate of the Hessian of a function

    Returns
    -------
    tuple
        the Hessian, and all the values of the function which were computed
    """
    dimension = center.size
    values: tp.List[float] = []

    def evaluate(*shifts: tp.Tuple[int, float]) -> float:
        x = np.array(center, copy=True)
        for dim, sign in shifts:
            x[dim] += sign * steps[dim]
        values.append(func(x))
        return values[-1]

    f0 = evaluate()
    matrix = np.zeros((dimension, dimension))
    for i in range(dimension):
        matrix[i, i] = (evaluate((i, 1)) - 2 * f0 + evaluate((i, -1))) / steps[i] ** 2
        for j in range(i):
            cross = evaluate((i, 1), (j, 1)) - evaluate((i, 1), (j, -1))
            cross += evaluate((i, -1), (j, -1)) - evaluate((i, -1), (j, 1))
            matrix[i, j] = matrix[j, i] = cross / (4 * steps[i] * steps[j])
    return matrix, values


def parameter_correlations(
    score_function: tp.ScoreFunction,
    best: np.ndarray,
    bounds: Bounds,
    mintrades: int,
    fraction: float = 0.01,
) -> CorrelationReport:
    """Estimates the correlations of the parameters around the best candidate, from
    the Hessian of the criterion computed with central finite differences.

    Parameters
    ----------
    score_function: callable
        the criterion, called as score_function(params, mintrades)
    best: np.ndarray
        the best parameters (a trailing score is ignored)
    bounds: Bounds
        bounds of the search space. The finite difference stencil is shifted inside the bounds
        when the best lies close to one of them.
    mintrades: int
        minimum number of trades to provide to the criterion
    fraction: float
        step of the finite differences, as a fraction of the range of each parameter
        (at least one unit for integer parameters)

    Returns
    -------
    CorrelationReport
        the report

    Raises
    ------
    CorrelationFailure
        if a parameter cannot be moved within its bounds, if the criterion cannot
        score the parameters around the best, or if it is not concave at the best
    """
    best = np.array(best[: bounds.dimension], dtype=float, copy=True)
    steps = finite_difference_steps(bounds, fraction)
    fixed = np.where(~(bounds.span >= 2 * steps) | ~(steps > 0))[0]
    if fixed.size:
        raise errors.CorrelationFailure(f"Parameters {fixed.tolist()} cannot vary within their bounds")
    center = np.clip(best, bounds.low + steps, bounds.high - steps)
    matrix, values = hessian(
        lambda x: float(score_function(np.clip(x, bounds.low, bounds.high), mintrades)), center, steps
    )
    if not min(values) > 0:
        raise errors.CorrelationFailure("The criterion cannot score all the parameters around the best candidate")
    sensitivities, directions = np.linalg.eigh(-matrix)
    if not np.all(sensitivities > 1e-12 * np.max(np.abs(sensitivities))):
        raise errors.CorrelationFailure("The criterion is not concave around the best candidate")
    covariance = directions @ np.diag(1.0 / sensitivities) @ directions.T
    stddev = np.sqrt(np.diag(covariance))
    order = np.argsort(sensitivities)[::-1]
    return CorrelationReport(
        best=best,
        stddev=stddev,
        correlations=covariance / np.outer(stddev, stddev),
        sensitivities=sensitivities[order],
        directions=directions[:, order],
        num_evaluations=len(values),
    )
