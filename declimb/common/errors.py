# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

# base classes


class DeclimbError(Exception):
    """Base class for error raised by declimb"""


class DeclimbWarning(Warning):
    pass


# errors
# pylint: disable=too-many-ancestors


class DeclimbRuntimeError(RuntimeError, DeclimbError):
    """Runtime error raised by declimb"""


class DeclimbValueError(ValueError, DeclimbError):
    """Invalid bounds or settings provided to declimb"""


class CorrelationFailure(DeclimbRuntimeError):
    """The final population does not allow estimating parameter correlations
    (too few distinct individuals, singular fit or non-concave surface).
    """


# warnings


class DeclimbRuntimeWarning(RuntimeWarning, DeclimbWarning):
    """Runtime warning raised by declimb"""


class InefficientSettingsWarning(DeclimbRuntimeWarning):
    """Optimization settings are not optimal for the optimizer"""


class MinTradesRelaxedWarning(DeclimbRuntimeWarning):
    """The minimum trade count was lowered after too many invalid scores"""


class EvaluationCapWarning(DeclimbRuntimeWarning):
    """Initialization exceeded the maximum number of evaluations and was aborted"""
