"""This module uses jaxtyping to add various more specific tensor types.

Batches follow the column convention used throughout the library: rows are units (features), columns are samples.
"""
from typing import TypeAlias

from jaxtyping import Float
from torch import Tensor


VisibleFloat: TypeAlias = Float[Tensor, "visible"]
HiddenFloat: TypeAlias = Float[Tensor, "hidden"]
WeightMatrixFloat: TypeAlias = Float[Tensor, "hidden visible"]
ParameterVectorFloat: TypeAlias = Float[Tensor, "params"]

VisibleBatchFloat: TypeAlias = Float[Tensor, "visible batch"]
HiddenBatchFloat: TypeAlias = Float[Tensor, "hidden batch"]
GroupBatchFloat: TypeAlias = Float[Tensor, "units batch"]

ScalarFloat: TypeAlias = Float[Tensor, ""]
