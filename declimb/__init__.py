# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

from .common import typing as typing
from .common import errors as errors
from .optimization import differentialevolution as optimizers
from .optimization import callbacks as callbacks
from .optimization.base import registry as registry
from .optimization.base import RunStatus as RunStatus
from .optimization.differentialevolution import HybridDE as HybridDE
from .optimization.differentialevolution import diff_ev as diff_ev


__all__ = ["optimizers", "callbacks", "registry", "errors", "typing", "RunStatus", "HybridDE", "diff_ev"]


__version__ = "0.1.0"
