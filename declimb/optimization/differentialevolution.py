# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import logging
import warnings
import numpy as np
import declimb.common.typing as tp
from declimb.common import errors
from . import base
from . import correlation
from . import population as pop
from .hillclimbing import HillClimber

logger = logging.getLogger(__name__)


class RotatingCrossover:
    """Differential mutation combined with a crossover with the pure parent.

    Dimensions are visited in order, starting from a random one and wrapping around.
    Each of them takes the mutated value :code:`parent2 + mutate_dev * (diff1 - diff2)`
    with probability pcross, and the value of the pure parent otherwise.
    The last visited dimension is forced to the mutated value if no other one was,
    so that the child always differs from its pure parent.
    """

    def __init__(self, random_state: np.random.RandomState, pcross: float, mutate_dev: float) -> None:
        self.random_state = random_state
        self.pcross = pcross
        self.mutate_dev = mutate_dev

    def apply(
        self,
        child: np.ndarray,
        parent1: np.ndarray,
        parent2: np.ndarray,
        diff1: np.ndarray,
        diff2: np.ndarray,
        dimension: int,
    ) -> None:
        dim = self.random_state.randint(dimension)
        used_mutated = False
        for remaining in reversed(range(dimension)):
            if (not remaining and not used_mutated) or self.random_state.uniform() < self.pcross:
                child[dim] = parent2[dim] + self.mutate_dev * (diff1[dim] - diff2[dim])
                used_mutated = True
            else:
                child[dim] = parent1[dim]
            dim = (dim + 1) % dimension


class _HybridDE(base.Optimizer):
    """Differential evolution with hill-climbing steps, maximizing the criterion.
    See HybridDE for the configuration.
    """

    # pylint: disable=too-many-instance-attributes

    def __init__(
        self,
        low_bounds: tp.ArrayLike,
        high_bounds: tp.ArrayLike,
        nints: int = 0,
        config: tp.Optional["HybridDE"] = None,
    ) -> None:
        super().__init__(low_bounds, high_bounds, nints=nints)
        self._config = HybridDE() if config is None else config
        pop_choice = {"standard": max(20, 5 * self.dimension), "large": max(20, 10 * self.dimension)}
        popsize = self._config.popsize
        self.popsize = pop_choice[popsize] if isinstance(popsize, str) else int(popsize)
        if self.popsize < 4:
            raise errors.DeclimbValueError(f"Population size must be at least 4 (got {self.popsize})")
        if self.popsize < 2 * self.dimension:
            warnings.warn(
                f"Population size {self.popsize} is small for {self.dimension} parameters, "
                "5 to 10 times the number of parameters is advised",
                errors.InefficientSettingsWarning,
            )
        overinit = self._config.overinit
        self.overinit = self.popsize if overinit == "popsize" else int(overinit)
        # run state, created when maximizing
        self.state: tp.Optional[pop.RunState] = None
        self.best: tp.Optional[pop.BestSoFar] = None
        self.populations: tp.Optional[pop.DoubleBuffer] = None
        self._score_function: tp.Optional[tp.ScoreFunction] = None
        self._verbosity = 0

    def _evaluate(self, params: np.ndarray, mintrades: int) -> float:
        assert self._score_function is not None and self.state is not None
        value = float(self._score_function(params, mintrades))
        self.state.num_evaluations += 1
        self._run_callbacks("evaluation", params, value)
        return value

    def _internal_maximize(
        self,
        score_function: tp.ScoreFunction,
        mintrades: int,
        verbosity: int,
        collector: tp.Optional[tp.DataCollectorLike],
    ) -> base.OptimizationResult:
        if self.state is not None:
            raise errors.DeclimbRuntimeError("Each optimizer instance can only be used for one run")
        self._score_function = score_function
        self._verbosity = verbosity
        self.state = pop.RunState(mintrades, self._config.max_evals)
        self.best = pop.BestSoFar(self.dimension)
        try:
            self.populations = pop.DoubleBuffer(self.popsize, self.dimension)
        except MemoryError:
            logger.error("Could not allocate populations of size %s", self.popsize)
            return self._result(base.RunStatus.ALLOCATION_FAILURE)
        logger.info(
            "Starting %s with %s parameters (%s integers), population %s and over-initialization %s",
            self.name,
            self.dimension,
            self.bounds.nints,
            self.popsize,
            self.overinit,
        )
        if collector is not None:
            collector.collect(True)
        try:
            complete = self._initialize()
        finally:
            if collector is not None:
                collector.collect(False)
        if not complete:
            warnings.warn(
                f"Initialization aborted after {self.state.num_evaluations} evaluations, "
                f"returning the best candidate so far (score {self.best.score})",
                errors.EvaluationCapWarning,
            )
            return self._result(base.RunStatus.OK, aborted=True)
        self._evolve()
        status = base.RunStatus.OK
        report: tp.Optional[correlation.CorrelationReport] = None
        if self._config.report:
            try:
                report = correlation.parameter_correlations(
                    score_function, self.best.candidate, self.bounds, self.state.mintrades
                )
            except errors.CorrelationFailure as e:
                warnings.warn(f"Parameter correlations are not available: {e}", errors.DeclimbRuntimeWarning)
                status = base.RunStatus.REPORT_FAILURE
            else:
                if verbosity:
                    print(report)
        result = self._result(status, report=report)
        logger.info("Finished %s: %s", self.name, result)
        return result

    def _result(
        self, status: base.RunStatus, aborted: bool = False, report: tp.Optional[correlation.CorrelationReport] = None
    ) -> base.OptimizationResult:
        assert self.state is not None and self.best is not None
        last = None
        if self.populations is not None and not aborted and status != base.RunStatus.ALLOCATION_FAILURE:
            last = np.array(self.populations.new, copy=True)
        return base.OptimizationResult(
            status,
            np.array(self.best.candidate, copy=True),
            num_evaluations=self.state.num_evaluations,
            num_generations=self.state.generation,
            mintrades=self.state.mintrades,
            aborted=aborted,
            population=last,
            report=report,
        )

    def _initialize(self) -> bool:
        """Fills the parent generation with random valid candidates, then over-initializes
        by replacing the worst candidate with any better random candidate.
        Returns False if aborted because of too many evaluations.
        """
        assert self.state is not None and self.best is not None and self.populations is not None
        state, best = self.state, self.best
        parents = self.populations.old
        scratch = self.populations.new[0]  # work slot for over-initialization
        ind = 0
        while ind < self.popsize + self.overinit:
            candidate = parents[ind] if ind < self.popsize else scratch
            self.bounds.sample(self.random_state, candidate)
            value = self._evaluate(candidate[:-1], state.mintrades)
            candidate[-1] = value
            best.update(candidate)
            if not value > 0:  # invalid, skip it entirely
                if state.cap_exceeded:
                    logger.debug("Aborting initialization after %s evaluations", state.num_evaluations)
                    return False
                state.register_failure()
                continue
            state.register_success()
            if ind >= self.popsize:  # over-initialization: replace the worst if better
                worst = pop.worst_index(parents)
                if value > parents[worst, -1]:
                    parents[worst] = candidate
            if self._verbosity:
                scores = parents[: min(ind + 1, self.popsize), -1]
                print(
                    f"{ind}: Val={value:.4f} Best={best.score:.4f} Worst={scores.min():.4f} Avg={scores.mean():.4f}"
                    f"  (fail rate={state.num_evaluations / (ind + 1.0):.1f}) {candidate[:-1].tolist()}"
                )
            ind += 1
        best.index = pop.best_index(parents)
        best.num_tweaked = 0
        scores = parents[:, -1]
        self._run_callbacks(
            "generation",
            base.GenerationStats(
                0, best.score, scores.min(), scores.mean(), True, state.num_evaluations, state.mintrades
            ),
        )
        return True

    def _climbing_dimension(self, ind: int, generation: int) -> tp.Optional[int]:
        """Dimension on which the candidate at the given index must be improved by hill-climbing,
        or None. The best candidate gets each of its dimensions tweaked in turn once, then
        any candidate is tweaked on a random dimension with probability pclimb.
        """
        assert self.best is not None
        if not self._config.pclimb > 0:
            return None
        if ind == self.best.index and self.best.num_tweaked < self.dimension:
            self.best.num_tweaked += 1
            return generation % self.dimension
        if self.random_state.uniform() < self._config.pclimb:
            return int(self.random_state.randint(self.dimension))
        return None

    def _evolve(self) -> None:
        """Runs generations until too many of them in a row did not improve the best candidate"""
        assert self.state is not None and self.best is not None and self.populations is not None
        state, best, populations = self.state, self.best, self.populations
        crossover = RotatingCrossover(self.random_state, self._config.pcross, self._config.mutate_dev)
        climber = HillClimber(self.bounds, self._evaluate, verbosity=self._verbosity)
        while True:
            state.generation += 1
            generation = state.generation
            parents, children = populations.old, populations.new
            improved = False
            for ind in range(self.popsize):
                parent1, child = parents[ind], children[ind]
                i, j, k = pop.distinct_indices(self.random_state, self.popsize, exclude=(ind,))
                crossover.apply(child, parent1, parents[i], parents[j], parents[k], self.dimension)
                self.bounds.ensure_legal(child)  # the penalty is only useful for line searches
                value = self._evaluate(child[:-1], state.mintrades)
                if value > parent1[-1]:
                    child[-1] = value
                    improved |= best.update(child, index=ind, generation=generation)
                else:
                    child[:] = parent1
                dim = self._climbing_dimension(ind, generation)
                if dim is not None:
                    if self._verbosity > 1:
                        print(f"Hill-climbing individual {ind} on variable {dim}")
                    if climber.climb(child, dim, state.mintrades):
                        improved |= best.update(child, index=ind, generation=generation)
            scores = children[:, -1]
            stats = base.GenerationStats(
                generation, best.score, scores.min(), scores.mean(), improved, state.num_evaluations, state.mintrades
            )
            if self._verbosity:
                print(
                    f"Gen {generation} Best={stats.best:.4f} Worst={stats.worst:.4f} Avg={stats.average:.4f} "
                    f"{best.candidate[:-1].tolist()}"
                )
            self._run_callbacks("generation", stats)
            if state.end_generation(improved) > self._config.max_bad_gen:
                logger.debug("Stopping after %s generations without improvement", state.bad_generations)
                break
            populations.swap()


# pylint: disable=too-many-arguments, too-many-instance-attributes
class HybridDE(base.ConfiguredOptimizer):
    """Differential evolution for maximizing a noisy and expensive criterion over mixed
    integer/real parameters, with optional hill-climbing steps.

    Each child is built from its pure parent and a mutated vector
    :code:`parent2 + mutate_dev * (diff1 - diff2)` through a rotating crossover, and replaces
    its parent only if strictly better. Scores <= 0 are considered invalid: they are skipped
    during initialization, and the minimum number of trades provided to the criterion is lowered
    by 10% after 500 of them in a row.

    Parameters
    ----------
    popsize: int, "standard" or "large"
        size of the population to use. "standard" is max(20, 5 * dimension), "large" is
        max(20, 10 * dimension). Must be at least 4.
    overinit: int or "popsize"
        number of additional random candidates evaluated during initialization, each replacing the
        worst of the population if better. Use 0 for simple problems, and "popsize" for hard ones.
    mutate_dev: float
        differential weight, around 0.4 to 1.2, larger values giving a more global search.
    pcross: float
        probability for each parameter to be taken from the mutated vector rather than
        from the pure parent.
    pclimb: float
        probability of a hill-climbing step on each child (0 for none). When positive, the best
        candidate also gets each of its parameters tweaked in turn.
    max_bad_gen: int
        maximum number of consecutive generations without improvement of the best candidate.
    max_evals: int
        number of evaluations after which an initialization still failing to find valid
        candidates is aborted. This is a safety, and should be very large.
    report: bool
        whether to compute parameter correlations around the best candidate at the end of the run,
        from finite differences of the criterion. These additional evaluations are neither counted
        in the result nor passed to the callbacks.
    """

    def __init__(
        self,
        *,
        popsize: tp.Union[str, int] = "standard",
        overinit: tp.Union[str, int] = 0,
        mutate_dev: float = 0.7,
        pcross: float = 0.2,
        pclimb: float = 0.1,
        max_bad_gen: int = 50,
        max_evals: int = 10**7,
        report: bool = True,
    ) -> None:
        super().__init__(_HybridDE, locals())
        if isinstance(popsize, str):
            assert popsize in ["standard", "large"], f'Unknown popsize "{popsize}"'
        elif popsize < 4:
            raise errors.DeclimbValueError(f"Population size must be at least 4 (got {popsize})")
        if isinstance(overinit, str):
            assert overinit == "popsize", f'Unknown overinit "{overinit}"'
        elif overinit < 0:
            raise errors.DeclimbValueError(f"overinit must be non-negative (got {overinit})")
        for name, proba in [("pcross", pcross), ("pclimb", pclimb)]:
            if not 0 <= proba <= 1:
                raise errors.DeclimbValueError(f"{name} must be in [0, 1] (got {proba})")
        if not mutate_dev > 0:
            raise errors.DeclimbValueError(f"mutate_dev must be positive (got {mutate_dev})")
        if not 0.4 <= mutate_dev <= 1.2:
            warnings.warn(
                f"mutate_dev={mutate_dev} is outside of the usual [0.4, 1.2] range",
                errors.InefficientSettingsWarning,
            )
        if max_bad_gen < 0 or max_evals < 1:
            raise errors.DeclimbValueError("max_bad_gen must be non-negative and max_evals positive")
        self.popsize = popsize
        self.overinit = overinit
        self.mutate_dev = mutate_dev
        self.pcross = pcross
        self.pclimb = pclimb
        self.max_bad_gen = max_bad_gen
        self.max_evals = max_evals
        self.report = report


def diff_ev(
    score_function: tp.ScoreFunction,
    nvars: int,
    nints: int,
    popsize: int,
    overinit: int,
    mintrd: int,
    max_evals: int,
    max_bad_gen: int,
    mutate_dev: float,
    pcross: float,
    pclimb: float,
    low_bounds: tp.ArrayLike,
    high_bounds: tp.ArrayLike,
    verbosity: int = 0,
    collector: tp.Optional[tp.DataCollectorLike] = None,
    random_state: tp.Optional[tp.Union[int, np.random.RandomState]] = None,
) -> base.OptimizationResult:
    """Maximizes a criterion with differential evolution and hill-climbing in a single call.

    Parameters
    ----------
    score_function: callable
        criterion to maximize, called as :code:`score_function(params, mintrades)`,
        returning a score <= 0 when the parameters cannot be scored
    nvars: int
        number of parameters, the first nints of which are integers
    low_bounds, high_bounds: array-like
        bounds of the parameters, of length nvars
    verbosity: int
        0 for silent, 1 for progress, 2 for progress and hill-climbing details

    See :class:`HybridDE` for the other parameters.

    Returns
    -------
    OptimizationResult
        with :code:`best` holding the nvars best parameters followed by their score
    """
    for name, bounds in [("low_bounds", low_bounds), ("high_bounds", high_bounds)]:
        if np.asarray(bounds).size != nvars:
            raise errors.DeclimbValueError(f"{name} must have {nvars} values (got {np.asarray(bounds).size})")
    config = HybridDE(
        popsize=popsize,
        overinit=overinit,
        mutate_dev=mutate_dev,
        pcross=pcross,
        pclimb=pclimb,
        max_bad_gen=max_bad_gen,
        max_evals=max_evals,
    )
    optimizer = config(low_bounds, high_bounds, nints=nints, random_state=random_state)
    return optimizer.maximize(score_function, mintrades=mintrd, verbosity=verbosity, collector=collector)


DE = HybridDE().set_name("HybridDE", register=True)
PureDE = HybridDE(pclimb=0.0).set_name("PureDE", register=True)
ClimbingDE = HybridDE(pclimb=0.3).set_name("ClimbingDE", register=True)
OverinitDE = HybridDE(overinit="popsize", pclimb=0.3).set_name("OverinitDE", register=True)
