# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import warnings
from unittest import mock
import pytest
import numpy as np
import declimb.common.typing as tp
from declimb.common import errors
from declimb.common import testing
from declimb.functions import corefuncs
from . import base
from . import differentialevolution as de
from . import population as pop


@testing.parametrized(
    no_crossover=(0.0, 1),
    full_crossover=(1.0, 5),
)
def test_rotating_crossover(pcross: float, expected: int) -> None:
    rng = np.random.RandomState(12)
    crossover = de.RotatingCrossover(rng, pcross=pcross, mutate_dev=0.5)
    parent1 = np.zeros(6)
    parent2 = np.ones(6)
    diff1, diff2 = np.full(6, 3.0), np.full(6, 1.0)
    for _ in range(20):
        child = np.full(6, -1.0)
        crossover.apply(child, parent1, parent2, diff1, diff2, 5)
        assert np.sum(child[:5] == 2.0) == expected  # 1 + 0.5 * (3 - 1)
        assert np.sum(child[:5] == 0.0) == 5 - expected
        assert child[5] == -1.0  # score slot untouched


def test_rotating_crossover_mixes() -> None:
    rng = np.random.RandomState(12)
    crossover = de.RotatingCrossover(rng, pcross=0.5, mutate_dev=1.0)
    counts = np.zeros(4)
    for _ in range(400):
        child = np.zeros(4)
        crossover.apply(child, np.zeros(4), np.ones(4), np.zeros(4), np.zeros(4), 4)
        assert child.sum() >= 1
        counts += child
    assert np.all(counts > 100)  # all dimensions get mutated


def test_paraboloid_convergence() -> None:
    func = corefuncs.Paraboloid()
    with warnings.catch_warnings():
        warnings.simplefilter("error", errors.DeclimbRuntimeWarning)
        result = de.diff_ev(
            func,
            nvars=2,
            nints=0,
            popsize=20,
            overinit=0,
            mintrd=1,
            max_evals=10**6,
            max_bad_gen=50,
            mutate_dev=0.8,
            pcross=0.9,
            pclimb=0.3,
            low_bounds=[-5, -5],
            high_bounds=[5, 5],
            random_state=12,
        )
    assert result.status == base.RunStatus.OK
    assert not result.aborted
    assert result.best.shape == (3,)
    assert result.score > 99.9
    assert result.score <= 100
    np.testing.assert_almost_equal(result.score, 100 - result.params.dot(result.params))
    assert result.num_generations > 50
    assert result.population is not None
    assert result.population.shape == (20, 3)
    np.testing.assert_array_less(result.population[:, -1], result.score + 1e-12)
    # the report is computed around the best, even on a fully converged population
    report = result.report
    assert report is not None
    assert func.num_calls == result.num_evaluations + report.num_evaluations
    np.testing.assert_array_equal(report.best, result.params)
    np.testing.assert_array_almost_equal(report.stddev, [np.sqrt(0.5)] * 2)
    np.testing.assert_array_almost_equal(report.correlations, np.identity(2))


def test_report_on_many_parameters() -> None:
    optimizer = de.HybridDE(max_bad_gen=10)([-5] * 8, [5] * 8, random_state=12)
    assert optimizer.popsize == 40  # type: ignore
    with warnings.catch_warnings():
        warnings.simplefilter("error", errors.DeclimbRuntimeWarning)
        result = optimizer.maximize(corefuncs.Paraboloid(center=range(-4, 4), height=1000))
    assert result.status == base.RunStatus.OK
    assert result.report is not None
    assert result.report.num_evaluations == 1 + 2 * 8 + 2 * 8 * 7
    np.testing.assert_array_almost_equal(result.report.correlations, np.identity(8))


def test_aborted_initialization() -> None:
    func = corefuncs.AlwaysZero()
    with pytest.warns(errors.EvaluationCapWarning):
        result = de.diff_ev(
            func,
            nvars=2,
            nints=0,
            popsize=10,
            overinit=0,
            mintrd=20,
            max_evals=1200,
            max_bad_gen=50,
            mutate_dev=0.7,
            pcross=0.2,
            pclimb=0.0,
            low_bounds=[0, 0],
            high_bounds=[1, 1],
            random_state=12,
        )
    assert result.status == base.RunStatus.OK
    assert result.aborted
    assert result.num_evaluations == 1201
    assert func.num_calls == 1201
    assert result.mintrades == 16
    assert result.num_generations == 0
    assert result.population is None
    assert result.score == 0.0
    testing.assert_legal(result.params[None, :], np.zeros(2), np.ones(2))
    assert func.mintrades[:500] == [20] * 500
    assert func.mintrades[500:1000] == [18] * 500
    assert set(func.mintrades[1000:]) == {16}


def test_overinitialization_replaces_worst() -> None:
    evaluations: tp.List[float] = []
    initial: tp.List[np.ndarray] = []

    def record_generation(optimizer: base.Optimizer, stats: base.GenerationStats) -> None:
        if not stats.generation:
            initial.append(np.array(optimizer.populations.old, copy=True))  # type: ignore

    optimizer = de.HybridDE(popsize=5, overinit=5, max_bad_gen=0, report=False)([-5] * 2, [5] * 2, random_state=12)
    optimizer.register_callback("evaluation", lambda opt, params, score: evaluations.append(score))
    optimizer.register_callback("generation", record_generation)
    optimizer.maximize(corefuncs.Paraboloid(height=200))
    assert len(initial) == 1
    population = initial[0]
    assert population.shape == (5, 3)
    expected = list(evaluations[:5])
    for score in evaluations[5:10]:
        worst = int(np.argmin(expected))
        if score > expected[worst]:
            expected[worst] = score
    np.testing.assert_array_equal(population[:, -1], expected)


def test_selection_is_monotonous() -> None:
    history: tp.List[float] = []

    def check(optimizer: base.Optimizer, stats: base.GenerationStats) -> None:
        populations = optimizer.populations  # type: ignore
        if stats.generation:
            assert np.all(populations.new[:, -1] >= populations.old[:, -1])
        assert stats.best == optimizer.best.score  # type: ignore
        assert stats.best >= np.max(populations.old[:, -1])
        history.append(stats.best)

    optimizer = de.HybridDE(popsize=12, pclimb=0.3, max_bad_gen=10, report=False)([-5] * 3, [5] * 3, random_state=3)
    optimizer.register_callback("generation", check)
    result = optimizer.maximize(corefuncs.Paraboloid(center=[1, 2, 3]))
    assert len(history) == result.num_generations + 1
    assert history == sorted(history)
    assert history[-1] == result.score


def test_mixed_integer_legality() -> None:
    low, high = np.array([2, 10, 0.0]), np.array([20, 100, 0.005])
    func = corefuncs.StepTrader(num_bars=1000)
    optimizer = de.HybridDE(popsize=15, pclimb=0.5, max_bad_gen=5, report=False)(low, high, nints=2, random_state=12)
    evaluated: tp.List[np.ndarray] = []
    optimizer.register_callback("evaluation", lambda opt, params, score: evaluated.append(np.array(params)))
    result = optimizer.maximize(func, mintrades=10)
    assert result.status == base.RunStatus.OK
    assert result.score > 0
    testing.assert_legal(np.array(evaluated), low, high, nints=2)
    testing.assert_legal(result.population[:, :-1], low, high, nints=2)  # type: ignore
    np.testing.assert_almost_equal(func(result.params, result.mintrades), result.score)


def test_collector_toggling() -> None:
    collector = mock.Mock()
    states: tp.List[int] = []
    optimizer = de.HybridDE(popsize=5, max_evals=20, report=False)([0, 0], [1, 1], random_state=12)
    optimizer.register_callback("evaluation", lambda *args: states.append(len(collector.collect.call_args_list)))
    with pytest.warns(errors.EvaluationCapWarning):
        optimizer.maximize(corefuncs.AlwaysZero(), collector=collector)
    assert collector.collect.call_args_list == [mock.call(True), mock.call(False)]
    assert set(states) == {1}  # enabled during all evaluations


def test_collector_disabled_after_initialization() -> None:
    collector = mock.Mock()
    states: tp.List[int] = []
    optimizer = de.HybridDE(popsize=5, max_bad_gen=2, report=False)([0, 0], [1, 1], random_state=12)
    optimizer.register_callback("evaluation", lambda *args: states.append(len(collector.collect.call_args_list)))
    optimizer.maximize(corefuncs.Paraboloid(), collector=collector)
    assert collector.collect.call_args_list == [mock.call(True), mock.call(False)]
    assert states[:5] == [1] * 5
    assert set(states[5:]) == {2}


def test_reproducibility() -> None:
    results = [
        de.ClimbingDE([-5] * 3, [5] * 3, random_state=12).maximize(corefuncs.Paraboloid(center=[1, 2, 3]))
        for _ in range(2)
    ]
    np.testing.assert_array_equal(results[0].best, results[1].best)
    assert results[0].num_evaluations == results[1].num_evaluations


def test_single_use() -> None:
    optimizer = de.HybridDE(popsize=5, max_bad_gen=1, report=False)([0], [1])
    optimizer.maximize(corefuncs.Paraboloid())
    with pytest.raises(errors.DeclimbRuntimeError):
        optimizer.maximize(corefuncs.Paraboloid())


@testing.parametrized(
    standard_small=("standard", 3, 20),
    standard=("standard", 6, 30),
    large_small=("large", 1, 20),
    large=("large", 3, 30),
    explicit=(7, 3, 7),
    numpy_int=(np.int64(7), 3, 7),
)
def test_popsize(popsize: tp.Union[str, int], dimension: int, expected: int) -> None:
    optimizer = de.HybridDE(popsize=popsize)([0] * dimension, [1] * dimension)
    assert optimizer.popsize == expected  # type: ignore


def test_overinit_popsize() -> None:
    optimizer = de.OverinitDE([0] * 5, [1] * 5)
    assert optimizer.overinit == 25  # type: ignore


def test_small_popsize_warning() -> None:
    with pytest.warns(errors.InefficientSettingsWarning):
        de.HybridDE(popsize=4)([0] * 3, [1] * 3)


@testing.parametrized(
    popsize=(dict(popsize=3), errors.DeclimbValueError),
    overinit=(dict(overinit=-1), errors.DeclimbValueError),
    pcross=(dict(pcross=1.5), errors.DeclimbValueError),
    pclimb=(dict(pclimb=-0.1), errors.DeclimbValueError),
    mutate_dev=(dict(mutate_dev=0.0), errors.DeclimbValueError),
    max_evals=(dict(max_evals=0), errors.DeclimbValueError),
)
def test_configuration_errors(kwargs: tp.Dict[str, tp.Any], error: tp.Type[Exception]) -> None:
    with pytest.raises(error):
        de.HybridDE(**kwargs)


def test_unusual_mutate_dev_warning() -> None:
    with pytest.warns(errors.InefficientSettingsWarning):
        de.HybridDE(mutate_dev=2.0)


def test_diff_ev_errors() -> None:
    kwargs = dict(
        nvars=2, nints=0, popsize=10, overinit=0, mintrd=1, max_evals=100, max_bad_gen=5,
        mutate_dev=0.7, pcross=0.2, pclimb=0.1,
    )
    with pytest.raises(errors.DeclimbValueError):
        de.diff_ev(corefuncs.Paraboloid(), low_bounds=[0, 0, 0], high_bounds=[1, 1], **kwargs)  # type: ignore
    with pytest.raises(errors.DeclimbValueError):
        de.diff_ev(corefuncs.Paraboloid(), low_bounds=[0, 0], high_bounds=[1, 1], **{**kwargs, "mintrd": 0})  # type: ignore


def test_registry() -> None:
    for name in ["HybridDE", "PureDE", "ClimbingDE", "OverinitDE"]:
        assert name in base.registry
        assert base.registry[name].name == name
    assert base.registry["PureDE"].config()["pclimb"] == 0.0
    assert repr(de.HybridDE(pclimb=0.3, max_bad_gen=12)) == "HybridDE(max_bad_gen=12, pclimb=0.3)"
    assert de.HybridDE(pclimb=0.3) == de.ClimbingDE
    optimizer = de.ClimbingDE([0], [1])
    assert optimizer.name == "ClimbingDE"
    assert "ClimbingDE" in repr(optimizer)


def test_climbing_dimension() -> None:
    optimizer = de.HybridDE(popsize=5, pclimb=0.5)([0] * 3, [1] * 3)
    optimizer.best = pop.BestSoFar(3)  # type: ignore
    optimizer.best.update(np.array([0.5, 0.5, 0.5, 1.0]), index=2, generation=1)  # type: ignore
    rng = mock.Mock()
    rng.uniform.return_value = 0.9  # above pclimb
    rng.randint.return_value = 1
    optimizer._random_state = rng  # pylint: disable=protected-access
    dims = [optimizer._climbing_dimension(2, generation) for generation in range(4, 9)]  # type: ignore
    testing.printed_assert_equal(dims, [1, 2, 0, None, None])
    assert optimizer.best.num_tweaked == 3  # type: ignore
    assert rng.uniform.call_count == 2  # no draw while the best is being tweaked
    # other slots only climb through the random draw
    rng.uniform.return_value = 0.1
    assert optimizer._climbing_dimension(0, 9) == 1  # type: ignore
    assert rng.uniform.call_count == 3
    rng.randint.assert_called_once_with(3)
    # a new best is tweaked again
    optimizer.best.update(np.array([0.2, 0.2, 0.2, 2.0]), index=4, generation=10)  # type: ignore
    assert optimizer.best.num_tweaked == 0  # type: ignore
    assert optimizer._climbing_dimension(4, 10) == 1  # type: ignore
    assert optimizer.best.num_tweaked == 1  # type: ignore
    assert rng.uniform.call_count == 3


def test_no_climbing() -> None:
    optimizer = de.PureDE([0] * 3, [1] * 3)
    optimizer.best = pop.BestSoFar(3)  # type: ignore
    optimizer.best.update(np.ones(4), index=0)  # type: ignore
    rng = mock.Mock()
    optimizer._random_state = rng  # pylint: disable=protected-access
    assert optimizer._climbing_dimension(0, 1) is None  # type: ignore
    assert not rng.uniform.called


def _copy_parent(crossover: tp.Any, child: np.ndarray, parent1: np.ndarray, *args: tp.Any) -> None:
    child[:] = parent1


def test_integer_climb_updates_best() -> None:
    records: tp.List[tp.Tuple[bool, int, np.ndarray]] = []

    def record(optimizer: base.Optimizer, stats: base.GenerationStats) -> None:
        best = optimizer.best  # type: ignore
        records.append((stats.improved, best.generation, np.array(best.candidate, copy=True)))

    optimizer = de.HybridDE(popsize=4, pclimb=1.0, max_bad_gen=0, report=False)([0], [1000], nints=1, random_state=12)
    optimizer.register_callback("generation", record)
    # without mutation, improvements can only come from hill-climbing
    with mock.patch.object(de.RotatingCrossover, "apply", _copy_parent):
        result = optimizer.maximize(lambda x, m: 1.0 + x[0])
    assert result.num_generations == 2
    improved, generation, candidate = records[1]
    assert improved
    assert generation == 1
    np.testing.assert_array_equal(candidate, [1000, 1001])
    assert not records[2][0]
    np.testing.assert_array_equal(result.best, [1000, 1001])
