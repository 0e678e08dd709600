# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

from .base import registry
from .base import RunStatus
from .base import OptimizationResult
from .differentialevolution import HybridDE
from .differentialevolution import diff_ev
