# Copyright (c) Meta Platforms, Inc. and affiliates.
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.

from .corefuncs import Paraboloid as Paraboloid
from .corefuncs import StepTrader as StepTrader
from .corefuncs import AlwaysZero as AlwaysZero
