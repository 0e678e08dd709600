# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import numpy as np
from scipy import optimize as scipyoptimize
import declimb.common.typing as tp
from .legality import Bounds


class Bracket(tp.NamedTuple):
    """Three abscissae x1 < x2 < x3 (possibly equal at the edges) with their values,
    y2 being the largest of the three.
    """

    x1: float
    y1: float
    x2: float
    y2: float
    x3: float
    y3: float

    @property
    def strict(self) -> bool:
        """Whether the center is strictly above both ends, as required by Brent method"""
        return self.x1 < self.x2 < self.x3 and self.y2 > self.y1 and self.y2 > self.y3


class UnivariateObjective:
    """Criterion of a single parameter of a candidate, the others being kept fixed.
    The objective works on its own copy of the parameters so that a line search
    never alters the candidate it was built from.

    Parameters
    ----------
    candidate: np.ndarray
        parameters of the candidate (a trailing score is ignored)
    dim: int
        index of the parameter to vary
    bounds: Bounds
        bounds of the search space, used to make the parameters legal
    score_function: callable
        the criterion to maximize, called as score_function(params, mintrades)
    mintrades: int
        minimum number of trades to provide to the criterion

    Note
    ----
    The returned value is the score minus the legality penalty, so that an unbounded line search is
    steeply pushed back inside the bounds instead of being stopped by a hard wall.
    """

    def __init__(
        self,
        candidate: np.ndarray,
        dim: int,
        bounds: Bounds,
        score_function: tp.ScoreFunction,
        mintrades: int,
    ) -> None:
        self.params = np.array(candidate[: bounds.dimension], dtype=float, copy=True)
        self.dim = int(dim)
        self.base = float(self.params[self.dim])
        self.bounds = bounds
        self.score_function = score_function
        self.mintrades = mintrades
        self.num_calls = 0

    def __call__(self, value: float) -> float:
        self.params[self.dim] = value
        penalty = self.bounds.ensure_legal(self.params)
        self.num_calls += 1
        return float(self.score_function(self.params, self.mintrades)) - penalty

    def search_interval(self, fraction: float = 0.1) -> tp.Tuple[float, float]:
        """Interval centered on the base value, spanning +/- fraction of the range of the dimension,
        and shifted inside the bounds if it crosses one of them.
        """
        low, high = self.bounds.low[self.dim], self.bounds.high[self.dim]
        width = fraction * self.bounds.span[self.dim]
        lower, upper = self.base - width, self.base + width
        if lower < low:
            lower, upper = low, low + 2 * width
        if upper > high:
            lower, upper = high - 2 * width, high
        return lower, upper


def bracket_maximum(
    func: tp.UnivariateFunction, low: float, high: float, npts: int = 7, max_extend: int = 50
) -> Bracket:
    """Global search of a maximum over an interval, on an equally spaced grid.
    If the best point of the grid lies on one end, the grid is extended
    outwards with the same spacing as long as the function keeps increasing.

    Parameters
    ----------
    func: callable
        univariate function to maximize
    low: float
        first point of the grid
    high: float
        last point of the grid
    npts: int
        number of points of the grid (at least 3)
    max_extend: int
        maximum number of points added when extending the grid

    Returns
    -------
    Bracket
        best point of the grid and its neighbors. If the function was still increasing
        at the end of the extension, the best point is duplicated as a neighbor.
    """
    assert npts >= 3, "At least 3 points are required for bracketing"
    if not high > low:  # degenerate interval
        y = func(low)
        return Bracket(low, y, low, y, low, y)
    step = (high - low) / (npts - 1)
    xs = [low + k * step for k in range(npts - 1)] + [high]
    ys = [func(x) for x in xs]
    ibest = int(np.argmax(ys))
    extensions = 0
    while ibest == len(xs) - 1 and extensions < max_extend:
        xs.append(xs[-1] + step)
        ys.append(func(xs[-1]))
        extensions += 1
        if ys[-1] > ys[ibest]:
            ibest += 1
        else:
            break
    while ibest == 0 and extensions < max_extend:
        xs.insert(0, xs[0] - step)
        ys.insert(0, func(xs[0]))
        extensions += 1
        if ys[0] <= ys[1]:
            ibest = 1
    left, right = max(0, ibest - 1), min(len(xs) - 1, ibest + 1)
    return Bracket(xs[left], ys[left], xs[ibest], ys[ibest], xs[right], ys[right])


def refine_maximum(
    func: tp.UnivariateFunction, bracket: Bracket, maxiter: int = 5, xtol: float = 1e-4
) -> tp.Tuple[float, float]:
    """Local refinement of a bracketed maximum with Brent method.

    Parameters
    ----------
    func: callable
        univariate function to maximize, expected to be deterministic
    bracket: Bracket
        a bracket as provided by :func:`bracket_maximum`
    maxiter: int
        maximum number of Brent iterations
    xtol: float
        relative tolerance on the abscissa

    Returns
    -------
    tuple
        the abscissa of the refined maximum and its value. The center of the bracket
        is returned as is when the bracket is not strict (flat or monotonous function),
        or when refinement does not improve on it.
    """
    if not bracket.strict:
        return bracket.x2, bracket.y2
    result = scipyoptimize.minimize_scalar(
        lambda x: -func(x),
        bracket=(bracket.x1, bracket.x2, bracket.x3),
        method="brent",
        options={"xtol": xtol, "maxiter": maxiter},
    )
    x, y = float(result.x), -float(result.fun)
    if not y > bracket.y2:
        return bracket.x2, bracket.y2
    return x, y
