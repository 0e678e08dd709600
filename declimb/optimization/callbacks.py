# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

import json
import time
import datetime
import logging
import warnings
from pathlib import Path
import numpy as np
import pandas as pd
import declimb.common.typing as tp
from . import base

global_logger = logging.getLogger(__name__)

# -------------------------------------------------------------------------------------

class OptimizationPrinter:
    """Printer to register as "generation" callback in an optimizer, for printing
    the best score regularly.

    Parameters
    ----------
    print_interval_generations: int
        max number of generations before performing another print
    print_interval_seconds: float
        max number of seconds before performing another print
    """

    def __init__(self, print_interval_generations: int = 1, print_interval_seconds: float = 60.0) -> None:
        assert print_interval_generations > 0
        assert print_interval_seconds > 0
        self._print_interval_generations = int(print_interval_generations)
        self._print_interval_seconds = print_interval_seconds
        self._next_generation = 0
        self._next_time = time.time() + print_interval_seconds

    def __call__(self, optimizer: base.Optimizer, stats: base.GenerationStats) -> None:
        if time.time() >= self._next_time or stats.generation >= self._next_generation:
            self._next_time = time.time() + self._print_interval_seconds
            self._next_generation = stats.generation + self._print_interval_generations
            print(f"After generation {stats.generation} ({stats.num_evaluations} evaluations), best score is {stats.best}")

# -------------------------------------------------------------------------------------

class OptimizationLogger:
    """Logger to register as "generation" callback in an optimizer, for logging
    the generation summaries regularly.

    Parameters
    ----------
    logger:
        given logger that callback will use to log
    log_level:
        log level that logger will write to
    log_interval_generations: int
        max number of generations before performing another log
    log_interval_seconds:
        max number of seconds before performing another log
    """

    def __init__(
        self,
        *,
        logger: logging.Logger = global_logger,
        log_level: int = logging.INFO,
        log_interval_generations: int = 1,
        log_interval_seconds: float = 60.0,
    ) -> None:
        assert log_interval_generations > 0
        assert log_interval_seconds > 0
        self._logger = logger
        self._log_level = log_level
        self._log_interval_generations = int(log_interval_generations)
        self._log_interval_seconds = log_interval_seconds
        self._next_generation = 0
        self._next_time = time.time() + log_interval_seconds

    def __call__(self, optimizer: base.Optimizer, stats: base.GenerationStats) -> None:
        if time.time() >= self._next_time or stats.generation >= self._next_generation:
            self._next_time = time.time() + self._log_interval_seconds
            self._next_generation = stats.generation + self._log_interval_generations
            self._logger.log(
                self._log_level,
                "Generation %s: best=%s worst=%s average=%s (%s evaluations, mintrades=%s)",
                stats.generation,
                stats.best,
                stats.worst,
                stats.average,
                stats.num_evaluations,
                stats.mintrades,
            )

# -------------------------------------------------------------------------------------

class ProgressRecorder:
    """Records the summary of each generation, to register as "generation" callback.

    Example
    -------

    .. code-block:: python

        recorder = ProgressRecorder()
        optimizer.register_callback("generation", recorder)
        optimizer.maximize(score)
        df = recorder.to_dataframe()
    """

    def __init__(self) -> None:
        self.history: tp.List[base.GenerationStats] = []

    def __call__(self, optimizer: base.Optimizer, stats: base.GenerationStats) -> None:
        self.history.append(stats)

    def to_dataframe(self) -> pd.DataFrame:
        """One row per generation, indexed by generation number"""
        return pd.DataFrame(self.history, columns=base.GenerationStats._fields).set_index("generation")

# -------------------------------------------------------------------------------------

class ParametersLogger:
    """Logs each evaluation into a file during optimization,
    to register as "evaluation" callback.

    Parameters
    ----------
    filepath: str or pathlib.Path
        the path to dump data to
    append: bool
        whether to append the file (otherwise it replaces it)

    Example
    -------

    .. code-block:: python

        logger = ParametersLogger(filepath)
        optimizer.register_callback("evaluation",  logger)
        optimizer.maximize(score)
        list_of_dict_of_data = logger.load()

    Note
    ----
    Arrays are converted to lists
    """

    def __init__(self, filepath: tp.PathLike, append: bool = True) -> None:
        self._session = datetime.datetime.now().strftime("%y-%m-%d %H:%M:%S")
        self._filepath = Path(filepath)
        if self._filepath.exists() and not append:
            self._filepath.unlink()
        self._filepath.parent.mkdir(exist_ok=True, parents=True)

    def __call__(self, optimizer: base.Optimizer, params: np.ndarray, score: float) -> None:
        data: tp.Dict[str, tp.Any] = {
            "#optimizer": optimizer.name,
            "#session": self._session,
            "#score": score,
        }
        state = getattr(optimizer, "state", None)
        if state is not None:
            data.update({"#num-evaluations": state.num_evaluations, "#generation": state.generation, "#mintrades": state.mintrades})
        data.update({f"x{k}": float(val) for k, val in enumerate(params)})
        try:  # avoid bugging as much as possible
            with self._filepath.open("a") as f:
                f.write(json.dumps(data) + "\n")
        except Exception as e:  # pylint: disable=broad-except
            warnings.warn(f"Failing to json data: {e}")

    def load(self) -> tp.List[tp.Dict[str, tp.Any]]:
        """Loads data from the log file"""
        data: tp.List[tp.Dict[str, tp.Any]] = []
        if self._filepath.exists():
            with self._filepath.open("r") as f:
                for line in f.readlines():
                    data.append(json.loads(line))
        return data

    def to_dataframe(self) -> pd.DataFrame:
        """Loads data from the log file as a dataframe, one row per evaluation"""
        return pd.DataFrame(self.load())
