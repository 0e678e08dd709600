# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import logging
import warnings
import numpy as np
import declimb.common.typing as tp
from declimb.common import errors

logger = logging.getLogger(__name__)

MAX_CONSECUTIVE_FAILURES = 500


class DoubleBuffer:
    """Two populations of candidates, one holding the parents (old generation)
    and the other receiving the children (new generation).
    Each candidate is a row holding the parameters followed by their score.

    Parameters
    ----------
    popsize: int
        number of candidates in each population
    nvars: int
        number of parameters of each candidate
    """

    def __init__(self, popsize: int, nvars: int) -> None:
        self._buffers = tuple(np.zeros((popsize, nvars + 1), dtype=float) for _ in range(2))
        self._old = 0

    @property
    def old(self) -> np.ndarray:
        """np.ndarray: the parent generation"""
        return self._buffers[self._old]

    @property
    def new(self) -> np.ndarray:
        """np.ndarray: the generation being built"""
        return self._buffers[1 - self._old]

    def swap(self) -> None:
        """Makes the new generation the parent generation of the next one"""
        self._old = 1 - self._old


def worst_index(population: np.ndarray) -> int:
    """Index of the first candidate with the lowest score"""
    return int(np.argmin(population[:, -1]))


def best_index(population: np.ndarray) -> int:
    """Index of the first candidate with the highest score"""
    return int(np.argmax(population[:, -1]))


class BestSoFar:
    """Best candidate ever evaluated during a run.

    Attributes
    ----------
    candidate: np.ndarray
        parameters followed by the score (NaN until the first update)
    index: int
        slot of the population which last produced the best (-1 if none)
    generation: int
        generation at which the best was found (0 for initialization)
    num_tweaked: int
        number of hill-climbing steps applied to this best since it was found
    """

    def __init__(self, nvars: int) -> None:
        self.candidate = np.full(nvars + 1, np.nan)
        self.index = -1
        self.generation = 0
        self.num_tweaked = 0

    @property
    def initialized(self) -> bool:
        return not np.isnan(self.candidate[-1])

    @property
    def score(self) -> float:
        return float(self.candidate[-1]) if self.initialized else -float("inf")

    def update(self, candidate: np.ndarray, index: int = -1, generation: int = 0) -> bool:
        """Records the candidate if it is the first one or if it is strictly better
        than the current best, and returns whether it was recorded.
        """
        if self.initialized and not candidate[-1] > self.score:
            return False
        self.candidate[:] = candidate
        self.index = index
        self.generation = generation
        self.num_tweaked = 0
        return True

    def __repr__(self) -> str:
        return f"BestSoFar(score={self.score}, generation={self.generation}, params={self.candidate[:-1].tolist()})"


class RunState:
    """Mutable state of a run, besides the populations

    Parameters
    ----------
    mintrades: int
        initial minimum number of trades required by the criterion, lowered after
        too many consecutive invalid scores during initialization
    max_evals: int
        number of evaluations above which initialization is aborted
    """

    def __init__(self, mintrades: int, max_evals: int) -> None:
        self.mintrades = int(mintrades)
        self.max_evals = int(max_evals)
        self.num_evaluations = 0
        self.num_failures = 0  # consecutive
        self.bad_generations = 0  # consecutive
        self.generation = 0

    @property
    def cap_exceeded(self) -> bool:
        return self.num_evaluations > self.max_evals

    def register_success(self) -> None:
        self.num_failures = 0

    def register_failure(self) -> bool:
        """Counts an invalid score, and relaxes the minimum number of trades
        after too many of them in a row.
        Returns whether the relaxation happened.
        """
        self.num_failures += 1
        if self.num_failures < MAX_CONSECUTIVE_FAILURES:
            return False
        self.num_failures = 0
        previous = self.mintrades
        self.mintrades = max(1, self.mintrades * 9 // 10)
        logger.debug("Relaxing minimum number of trades from %s to %s", previous, self.mintrades)
        warnings.warn(
            f"{MAX_CONSECUTIVE_FAILURES} invalid scores in a row, minimum number of trades "
            f"lowered from {previous} to {self.mintrades}",
            errors.MinTradesRelaxedWarning,
        )
        return True

    def end_generation(self, improved: bool) -> int:
        """Updates the count of consecutive generations without improvement of the best
        and returns it
        """
        self.bad_generations = 0 if improved else self.bad_generations + 1
        return self.bad_generations

    def __repr__(self) -> str:
        attributes = ("mintrades", "num_evaluations", "num_failures", "bad_generations", "generation")
        return "RunState({})".format(", ".join(f"{x}={getattr(self, x)}" for x in attributes))


def distinct_indices(
    random_state: np.random.RandomState, popsize: int, exclude: tp.Iterable[int], num: int = 3
) -> tp.List[int]:
    """Uniformly samples num distinct indices in [0, popsize) without replacement,
    avoiding the excluded ones.
    """
    candidates = np.setdiff1d(np.arange(popsize), np.fromiter(exclude, dtype=int))
    if candidates.size < num:
        raise errors.DeclimbValueError(f"Cannot sample {num} distinct indices among {candidates.size}")
    return [int(x) for x in random_state.choice(candidates, size=num, replace=False)]
