# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import enum
import numpy as np
import declimb.common.typing as tp
from declimb.common import tools as dctools
from declimb.common import errors as errors
from declimb.common.decorators import Registry
from .legality import Bounds


registry: Registry["ConfiguredOptimizer"] = Registry()
_OptimCallBack = tp.Callable[..., None]
_CALLBACK_NAMES = ("evaluation", "generation")


class RunStatus(enum.IntEnum):
    """Outcome of a run. An aborted initialization (too many evaluations)
    is not an error: the best candidate found so far is returned with status OK.
    """

    OK = 0
    ALLOCATION_FAILURE = 1
    REPORT_FAILURE = -1


class GenerationStats(tp.NamedTuple):
    """Summary of a generation (generation 0 being the initial population)"""

    generation: int
    best: float
    worst: float
    average: float
    improved: bool
    num_evaluations: int
    mintrades: int


class OptimizationResult:
    """Outcome of a maximization

    Attributes
    ----------
    status: RunStatus
        OK, or the reason of the failure
    best: np.ndarray
        best parameters followed by their score (NaN if no evaluation was performed)
    num_evaluations: int
        total number of calls to the criterion
    num_generations: int
        number of completed generations
    mintrades: int
        minimum number of trades at the end of the run (may have been relaxed)
    aborted: bool
        whether initialization was stopped because of too many evaluations
    population: np.ndarray or None
        last generation (parameters followed by scores)
    report: object or None
        correlation report computed around the best candidate
    """

    def __init__(
        self,
        status: RunStatus,
        best: np.ndarray,
        *,
        num_evaluations: int = 0,
        num_generations: int = 0,
        mintrades: int = 1,
        aborted: bool = False,
        population: tp.Optional[np.ndarray] = None,
        report: tp.Any = None,
    ) -> None:
        self.status = status
        self.best = best
        self.num_evaluations = num_evaluations
        self.num_generations = num_generations
        self.mintrades = mintrades
        self.aborted = aborted
        self.population = population
        self.report = report

    @property
    def params(self) -> np.ndarray:
        return self.best[:-1]

    @property
    def score(self) -> float:
        return float(self.best[-1])

    def __repr__(self) -> str:
        return (
            f"OptimizationResult(status={self.status.name}, score={self.score}, params={self.params.tolist()}, "
            f"num_evaluations={self.num_evaluations}, num_generations={self.num_generations})"
        )


class Optimizer:
    """Algorithm framework for maximizing a criterion over a box of parameters,
    the first of which may be integers. Each instance is meant to be used for one run.

    Parameters
    ----------
    low_bounds: array-like
        lower bound of each parameter
    high_bounds: array-like
        upper bound of each parameter
    nints: int
        number of leading parameters which are integers
    """

    def __init__(self, low_bounds: tp.ArrayLike, high_bounds: tp.ArrayLike, nints: int = 0) -> None:
        self.bounds = Bounds(low_bounds, high_bounds, nints=nints)
        self.name = self.__class__.__name__  # printed name in repr
        self._random_state: tp.Optional[np.random.RandomState] = None
        self._callbacks: tp.Dict[str, tp.List[_OptimCallBack]] = {}

    @property
    def random_state(self) -> np.random.RandomState:
        """np.random.RandomState: random state the optimizer must pull from.
        It can be seeded or replaced directly.
        """
        if self._random_state is None:
            seed = np.random.randint(2**32, dtype=np.uint32)
            self._random_state = np.random.RandomState(seed)
        return self._random_state

    @random_state.setter
    def random_state(self, random_state: tp.Union[int, np.random.RandomState]) -> None:
        if not isinstance(random_state, np.random.RandomState):
            random_state = np.random.RandomState(random_state)
        self._random_state = random_state

    @property
    def dimension(self) -> int:
        """int: Dimension of the optimization space."""
        return self.bounds.dimension

    def __repr__(self) -> str:
        return f"Instance of {self.name}(dimension={self.dimension}, nints={self.bounds.nints})"

    def register_callback(self, name: str, callback: _OptimCallBack) -> None:
        """Add a callback method called after each evaluation or each generation.
        This can be useful for custom logging.

        Parameters
        ----------
        name: str
            either :code:`evaluation` (called as :code:`callback(optimizer, params, score)`)
            or :code:`generation` (called as :code:`callback(optimizer, stats)` with :code:`GenerationStats`)
        callback: callable
            a callable taking the arguments above
        """
        assert name in _CALLBACK_NAMES, f"Only {_CALLBACK_NAMES} can have callbacks (not {name})"
        self._callbacks.setdefault(name, []).append(callback)

    def remove_all_callbacks(self) -> None:
        """Removes all registered callables"""
        self._callbacks = {}

    def _run_callbacks(self, name: str, *args: tp.Any) -> None:
        for callback in self._callbacks.get(name, []):
            callback(self, *args)

    def maximize(
        self,
        score_function: tp.ScoreFunction,
        mintrades: int = 1,
        verbosity: int = 0,
        collector: tp.Optional[tp.DataCollectorLike] = None,
    ) -> OptimizationResult:
        """Maximization procedure

        Parameters
        ----------
        score_function: callable
            criterion to maximize, called as :code:`score_function(params, mintrades)` with params a float
            array. Scores <= 0 mean that the parameters could not be scored (eg: too few trades).
        mintrades: int
            minimum number of trades to require, lowered automatically if no valid score can be found
        verbosity: int
            print information about the optimization (0: None, 1: progress, 2: progress and hill-climbing details)
        collector: object with a :code:`collect(flag)` method
            optional data collector, enabled during the generation of the initial population only

        Returns
        -------
        OptimizationResult
            the best candidate and information on the run
        """
        if int(mintrades) < 1:
            raise errors.DeclimbValueError(f"mintrades must be at least 1 (got {mintrades})")
        return self._internal_maximize(score_function, int(mintrades), verbosity, collector)

    def _internal_maximize(
        self,
        score_function: tp.ScoreFunction,
        mintrades: int,
        verbosity: int,
        collector: tp.Optional[tp.DataCollectorLike],
    ) -> OptimizationResult:
        raise NotImplementedError


class ConfiguredOptimizer:
    """Creates optimizer-like instances with configuration.

    Parameters
    ----------
    OptimizerClass: type
        class of the optimizer to configure
    config: dict
        dictionnary of all the configurations

    Note
    ----
    This provides a default repr which can be bypassed through set_name
    """

    def __init__(self, OptimizerClass: tp.Callable[..., Optimizer], config: tp.Dict[str, tp.Any]) -> None:
        self._OptimizerClass = OptimizerClass
        config.pop("self", None)  # self comes from "locals()"
        config.pop("__class__", None)  # self comes from "locals()"
        self._config = config  # keep all, to avoid weird behavior at mismatch between optim and configoptim
        diff = dctools.different_from_defaults(instance=self, instance_dict=config, check_mismatches=True)
        params = ", ".join(f"{x}={y!r}" for x, y in sorted(diff.items()))
        self.name = f"{self.__class__.__name__}({params})"

    def config(self) -> tp.Dict[str, tp.Any]:
        return dict(self._config)

    def __call__(
        self,
        low_bounds: tp.ArrayLike,
        high_bounds: tp.ArrayLike,
        nints: int = 0,
        random_state: tp.Optional[tp.Union[int, np.random.RandomState]] = None,
    ) -> Optimizer:
        """Creates an optimizer for the given search space

        Parameters
        ----------
        low_bounds: array-like
            lower bound of each parameter
        high_bounds: array-like
            upper bound of each parameter
        nints: int
            number of leading parameters which are integers
        random_state: int or RandomState
            optional seed or random state, for reproducibility
        """
        run = self._OptimizerClass(low_bounds, high_bounds, nints=nints, config=self)
        run.name = self.name
        if random_state is not None:
            run.random_state = random_state
        return run

    def __repr__(self) -> str:
        return self.name

    def set_name(self, name: str, register: bool = False) -> "ConfiguredOptimizer":
        """Set a new representation for the instance"""
        self.name = name
        if register:
            registry.register_name(name, self)
        return self

    def __eq__(self, other: tp.Any) -> tp.Any:
        if self.__class__ == other.__class__:
            if self._config == other._config:
                return True
        return False
