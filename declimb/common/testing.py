# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import inspect
import typing as tp
try:
    import pytest
except ImportError:
    pass  # makes most of this module usable without pytest
import numpy as np


def printed_assert_equal(actual: tp.Any, desired: tp.Any, err_msg: str = '') -> None:
    try:
        np.testing.assert_equal(actual, desired, err_msg=err_msg)
    except AssertionError as e:
        print("\n" + "# " * 12 + "DEBUG MESSAGE " + "# " * 12)
        print(f"Expected: {desired}\nbut got:  {actual}")
        raise e


def assert_legal(candidates: np.ndarray, low: tp.Any, high: tp.Any, nints: int = 0) -> None:
    """Asserts that all rows of the array (parameters followed by a score) are within
    bounds and have integral values on their first nints parameters.
    This function should only be used in tests.

    Parameters
    ----------
    candidates: np.ndarray
        2d array of candidates, or 1d array for a single candidate
    low: array-like
        lower bounds
    high: array-like
        upper bounds
    nints: int
        number of leading integer parameters
    """
    candidates = np.atleast_2d(candidates)
    low, high = (np.asarray(b, dtype=float) for b in (low, high))
    params = candidates[:, : low.size]
    below = np.argwhere(params < low)
    above = np.argwhere(params > high)
    messages = [f"  - {name} bound violated at (row, dim): {bad.tolist()}" for name, bad in [("lower", below), ("upper", above)] if bad.size]
    if nints:
        fractional = np.argwhere(params[:, :nints] != np.round(params[:, :nints]))
        if fractional.size:
            messages.append(f"  - non-integer values at (row, dim): {fractional.tolist()}")
    if messages:
        raise AssertionError("\n".join(["Candidates are not legal:"] + messages))


class parametrized:
    """Simplified decorator API for specifying named parametrized test with pytests
    (like with old "genty" package)
    See example of use in test_testing

    Parameters
    ----------
    **kwargs:
        name of the argument is converted as id of the experiments, and the provided tuple
        contains a value for each of the arguments of the underlying function (in the definition order).
    """

    def __init__(self, **kwargs: tp.Tuple[tp.Any, ...]):
        self.ids = sorted(kwargs)
        self.params = tuple(kwargs[name] for name in self.ids)
        assert self.params
        self.num_params = len(self.params[0])
        assert all(isinstance(p, (tuple, list)) for p in self.params)
        assert all(self.num_params == len(p) for p in self.params[1:])

    def __call__(self, func: tp.Callable[..., None]) -> tp.Any:  # type is lost here :(
        names = list(inspect.signature(func).parameters.keys())
        assert len(names) == self.num_params, f"Parameter names: {names}"
        return pytest.mark.parametrize(
            ",".join(names), self.params if self.num_params > 1 else [p[0] for p in self.params], ids=self.ids)(func)
