# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import logging
import numpy as np
import declimb.common.typing as tp
from . import univariate
from .legality import Bounds

logger = logging.getLogger(__name__)


class HillClimber:
    """Single-dimension local improvement of a candidate.

    Integer parameters are walked one unit at a time, upwards then (if upwards
    never improved) downwards, as long as the score strictly increases.
    Real parameters are optimized with a global bracketing search over a window
    of +/- 10% of their range around the current value, then refined with Brent method.

    Parameters
    ----------
    bounds: Bounds
        bounds of the search space
    score_function: callable
        criterion to maximize, called as score_function(params, mintrades)
    npts: int
        number of grid points of the bracketing search
    maxiter: int
        maximum number of iterations of the refinement
    xtol: float
        relative tolerance of the refinement
    verbosity: int
        prints details of each step if verbosity > 1
    """

    def __init__(
        self,
        bounds: Bounds,
        score_function: tp.ScoreFunction,
        npts: int = 7,
        maxiter: int = 5,
        xtol: float = 1e-4,
        verbosity: int = 0,
    ) -> None:
        self.bounds = bounds
        self.score_function = score_function
        self.npts = npts
        self.maxiter = maxiter
        self.xtol = xtol
        self.verbosity = verbosity

    def climb(self, candidate: np.ndarray, dim: int, mintrades: int) -> bool:
        """Improves the candidate (parameters followed by a score) in place along one dimension.
        The score of the candidate is updated along with its parameters, and the candidate
        is left untouched if no improvement was found.

        Returns
        -------
        bool
            whether the score was improved
        """
        if self.bounds.is_integer(dim):
            success = self._climb_integer(candidate, dim, mintrades)
        else:
            success = self._climb_real(candidate, dim, mintrades)
        logger.debug("Climbing dimension %s %s: %s", dim, "succeeded" if success else "failed", candidate[-1])
        if self.verbosity > 1:
            print(f"{'Success' if success else 'No success'} at {candidate[dim]} = {candidate[-1]}")
        return success

    def _climb_integer(self, candidate: np.ndarray, dim: int, mintrades: int) -> bool:
        params = candidate[:-1]  # view
        base = int(params[dim])
        value = candidate[-1]
        if self.verbosity > 1:
            print(f"Criterion maximization of integer variable {dim} from {base} = {value}")
        low, high = int(self.bounds.low[dim]), int(self.bounds.high[dim])
        success = False
        for direction in (1, -1):
            if success:  # no need to go back
                break
            trial = base
            while low <= trial + direction <= high:
                trial += direction
                params[dim] = trial
                test_value = self.score_function(params, mintrades)
                if self.verbosity > 1:
                    print(f"  {trial} = {test_value}")
                if not test_value > value:
                    break
                value = test_value
                base = trial
                success = True
            params[dim] = base
        candidate[-1] = value
        return success

    def _climb_real(self, candidate: np.ndarray, dim: int, mintrades: int) -> bool:
        params = candidate[:-1]  # view
        old_value = candidate[-1]
        objective = univariate.UnivariateObjective(params, dim, self.bounds, self.score_function, mintrades)
        if self.verbosity > 1:
            print(f"Criterion maximization of real variable {dim} from {objective.base} = {old_value}")
        lower, upper = objective.search_interval()
        bracket = univariate.bracket_maximum(objective, lower, upper, npts=self.npts)
        x, _ = univariate.refine_maximum(objective, bracket, maxiter=self.maxiter, xtol=self.xtol)
        params[dim] = x
        self.bounds.ensure_legal(params)
        value = self.score_function(params, mintrades)
        logger.debug("Line search on dimension %s used %s evaluations", dim, objective.num_calls)
        if value > old_value:
            candidate[-1] = value
            return True
        params[dim] = objective.base
        return False
