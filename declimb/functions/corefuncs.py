# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import numpy as np
import declimb.common.typing as tp


class Paraboloid:
    """Concave function with maximum equal to height at the center.
    The minimum number of trades is ignored.

    Parameters
    ----------
    center: array-like or None
        location of the maximum (defaults to the origin)
    height: float
        value at the maximum
    """

    def __init__(self, center: tp.Optional[tp.ArrayLike] = None, height: float = 100.0) -> None:
        self.center = None if center is None else np.asarray(center, dtype=float)
        self.height = height
        self.num_calls = 0

    def __call__(self, params: np.ndarray, mintrades: int) -> float:  # pylint: disable=unused-argument
        self.num_calls += 1
        x = np.asarray(params, dtype=float)
        if self.center is not None:
            x = x - self.center
        return float(self.height - x.dot(x))


class AlwaysZero:
    """Criterion which can never score any parameter"""

    def __init__(self) -> None:
        self.num_calls = 0
        self.mintrades: tp.List[int] = []

    def __call__(self, params: np.ndarray, mintrades: int) -> float:  # pylint: disable=unused-argument
        self.num_calls += 1
        self.mintrades.append(mintrades)
        return 0.0


class StepTrader:
    """Toy trading system on a synthetic cyclic market, for testing the optimizer
    on a realistic criterion with integer parameters and invalid regions.

    The system is long whenever the short moving average exceeds the long one by more
    than a threshold. Parameters are (short lookback, long lookback, threshold),
    the lookbacks being integers. The score is the profit factor (gains over losses)
    of the bars spent in the market, or 0 if fewer trades than required were taken.

    Parameters
    ----------
    num_bars: int
        number of price bars of the synthetic market
    seed: int
        seed of the synthetic market
    """

    def __init__(self, num_bars: int = 2000, seed: int = 0) -> None:
        rng = np.random.RandomState(seed)
        bars = np.arange(num_bars)
        changes = 0.002 * np.sin(2 * np.pi * bars / 150) + 0.01 * rng.normal(size=num_bars)
        self.prices = np.cumsum(changes)  # log prices
        self._cumsum = np.concatenate([[0.0], np.cumsum(self.prices)])
        self.num_calls = 0

    def _moving_average(self, lookback: int) -> np.ndarray:
        average = np.full(self.prices.size, np.nan)
        average[lookback - 1 :] = (self._cumsum[lookback:] - self._cumsum[:-lookback]) / lookback
        return average

    def positions(self, params: tp.ArrayLike) -> np.ndarray:
        """Whether the system is long over each price change, from the first bar
        where both averages are available
        """
        short, long_, threshold = int(params[0]), int(params[1]), float(params[2])
        start = max(short, long_)
        spread = self._moving_average(short) - self._moving_average(long_)
        return spread[start - 1 : -1] > threshold

    def __call__(self, params: np.ndarray, mintrades: int) -> float:
        self.num_calls += 1
        positions = self.positions(params)
        if not positions.size:
            return 0.0
        num_trades = int(positions[0]) + int(np.sum(positions[1:] & ~positions[:-1]))
        if num_trades < mintrades:
            return 0.0
        returns = np.diff(self.prices)[-positions.size :][positions]
        gains = float(np.sum(returns[returns > 0]))
        losses = -float(np.sum(returns[returns < 0]))
        return gains / (losses + 1e-6)
