# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import numpy as np
import declimb.common.typing as tp
from declimb.common import errors


PENALTY_FACTOR = 1.0e10


def round_half_away(values: np.ndarray) -> np.ndarray:
    """Rounds to the nearest integer, ties away from zero (np.round rounds ties to even)"""
    return np.where(values >= 0, np.floor(values + 0.5), -np.floor(0.5 - values))


def ensure_legal(
    params: np.ndarray, low_bounds: np.ndarray, high_bounds: np.ndarray, nints: int = 0
) -> float:
    """Makes the parameters legal, in place: the first nints parameters are rounded to integers,
    then all parameters are clipped to their bounds.

    Parameters
    ----------
    params: np.ndarray
        float array holding at least as many values as there are bounds. Trailing values
        (eg: the score of a candidate) are left untouched.
    low_bounds: np.ndarray
        lower bounds for each parameter
    high_bounds: np.ndarray
        upper bounds for each parameter
    nints: int
        number of leading parameters which are integers

    Returns
    -------
    float
        a penalty of 1e10 per unit of overshoot of the raw values outside of their bounds,
        0 for legal parameters.
    """
    values = params[: low_bounds.size]  # view, so updates are made in place
    overshoot = np.maximum(values - high_bounds, 0.0) + np.maximum(low_bounds - values, 0.0)
    penalty = PENALTY_FACTOR * float(np.sum(overshoot))
    if nints:
        values[:nints] = round_half_away(values[:nints])
    np.clip(values, low_bounds, high_bounds, out=values)
    return penalty


class Bounds:
    """Box of the search space, with a number of leading integer dimensions.

    Parameters
    ----------
    low_bounds: array-like
        lower bounds of each parameter
    high_bounds: array-like
        upper bounds of each parameter
    nints: int
        number of leading parameters which are integers, their bounds must be integers too
    """

    def __init__(self, low_bounds: tp.ArrayLike, high_bounds: tp.ArrayLike, nints: int = 0) -> None:
        self.low = np.array(low_bounds, dtype=float, copy=True).ravel()
        self.high = np.array(high_bounds, dtype=float, copy=True).ravel()
        self.nints = int(nints)
        if not self.low.size:
            raise errors.DeclimbValueError("No variable to optimize (empty bounds).")
        if self.low.shape != self.high.shape:
            raise errors.DeclimbValueError(
                f"Lower and upper bounds have different sizes ({self.low.size} and {self.high.size})"
            )
        if not (np.all(np.isfinite(self.low)) and np.all(np.isfinite(self.high))):
            raise errors.DeclimbValueError("Bounds must be finite")
        if np.any(self.low > self.high):
            raise errors.DeclimbValueError(f"Lower bounds must not exceed upper bounds ({self.low} > {self.high})")
        if not 0 <= self.nints <= self.dimension:
            raise errors.DeclimbValueError(f"nints must be in [0, {self.dimension}] but got {self.nints}")
        ints = np.concatenate([self.low[: self.nints], self.high[: self.nints]])
        if np.any(ints != np.round(ints)):
            raise errors.DeclimbValueError(f"Bounds of the {self.nints} integer parameters must be integers")
        # freeze
        for array in (self.low, self.high):
            array.flags.writeable = False

    @property
    def dimension(self) -> int:
        return self.low.size

    @property
    def span(self) -> np.ndarray:
        return self.high - self.low

    def is_integer(self, dim: int) -> bool:
        return dim < self.nints

    def ensure_legal(self, params: np.ndarray) -> float:
        """See :func:`ensure_legal`"""
        return ensure_legal(params, self.low, self.high, self.nints)

    def sample(self, random_state: np.random.RandomState, out: np.ndarray) -> np.ndarray:
        """Fills the parameters of the output with a uniform sample of the box:
        integers are drawn uniformly among all allowed values, reals in [low, high).
        One uniform draw is made per dimension, in order.
        """
        for dim in range(self.dimension):
            low, high = self.low[dim], self.high[dim]
            if dim < self.nints:
                value = low + np.floor(random_state.uniform() * (high - low + 1.0))
                out[dim] = min(value, high)  # uniform() < 1, but better be safe
            else:
                out[dim] = low + random_state.uniform() * (high - low)
        return out

    def __repr__(self) -> str:
        return f"Bounds(low={self.low.tolist()}, high={self.high.tolist()}, nints={self.nints})"
