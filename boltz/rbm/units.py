"""Visible unit types and everything that differs between them.

Each unit type defines three things: how pre-activations turn into means (conditional expectations given the hidden
units), how to draw a stochastic sample from those means, and what it adds to the free energy. The lookup tables at
the bottom of this module are the only place that branches on the unit type, so a new type only needs new entries
there.
"""
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

import torch

from ..types import GroupBatchFloat, ScalarFloat


UniformSampler = Callable[[tuple[int, ...]], torch.Tensor]


class VisibleUnitType(Enum):
    BINARY = "binary"
    SOFTMAX = "softmax"
    GAUSSIAN = "gaussian"

    def activate(self,
                 pre_activation: GroupBatchFloat) -> GroupBatchFloat:
        """Map a group's pre-activations (W^T h + b) to means."""
        return _ACTIVATIONS[self](pre_activation)

    def sample(self,
               mean: GroupBatchFloat,
               uniform: UniformSampler) -> GroupBatchFloat:
        """Draw a sample given means.

        Parameters:
            mean: Group means, as returned by activate.
            uniform: Function returning uniform [0, 1) draws of a given shape. All randomness must come from here
                     so seeded runs stay reproducible.
        """
        return _SAMPLERS[self](mean, uniform)

    def free_energy_term(self,
                         visible: GroupBatchFloat) -> ScalarFloat:
        """Contribution of a group to the (batch-summed) free energy beyond the bias and softplus terms."""
        return _FREE_ENERGY_TERMS[self](visible)


@dataclass(frozen=True)
class VisibleGroup:
    """A contiguous block of visible units sharing one unit type.

    Parameters:
        size: Number of units in the group.
        unit_type: Guess what.
        offset: Row index of the first unit of this group in the visible state.
    """
    size: int
    unit_type: VisibleUnitType
    offset: int

    @property
    def rows(self) -> slice:
        return slice(self.offset, self.offset + self.size)


def column_softmax(pre_activation: GroupBatchFloat) -> GroupBatchFloat:
    """Softmax over the units of each column, done in the log domain.

    The per-column maximum is subtracted before exponentiating, so large activations cannot overflow.
    """
    shifted = pre_activation - pre_activation.max(dim=0, keepdim=True).values
    return torch.exp(shifted - torch.logsumexp(shifted, dim=0, keepdim=True))


def sample_bernoulli(mean: GroupBatchFloat,
                     uniform: UniformSampler) -> GroupBatchFloat:
    return (uniform(tuple(mean.shape)) < mean).to(mean.dtype)


def sample_categorical(mean: GroupBatchFloat,
                       uniform: UniformSampler) -> GroupBatchFloat:
    """One-hot sample per column from the categorical distribution given by the column.

    One uniform real draw in [0, 1) is made per column; the first unit whose cumulative probability reaches the draw
    wins. This is deliberately not an integer draw: drawing from {0, 1} would almost always select the first unit (or
    none), which is not a sample from the distribution.
    """
    draws = uniform((mean.shape[1],))
    cumulative = mean.cumsum(dim=0)
    # rounding can leave the total slightly below 1; such draws go to the last unit
    winners = (cumulative < draws).sum(dim=0).clamp(max=mean.shape[0] - 1)
    return torch.zeros_like(mean).scatter_(0, winners.unsqueeze(0), 1.)


def keep_mean(mean: GroupBatchFloat,
              uniform: UniformSampler) -> GroupBatchFloat:
    """Gaussian units are not resampled; the mean stands in for the sample."""
    return mean.clone()


def no_free_energy_term(visible: GroupBatchFloat) -> ScalarFloat:
    return visible.new_zeros(())


def gaussian_free_energy_term(visible: GroupBatchFloat) -> ScalarFloat:
    """Quadratic term from the Gaussian-Bernoulli energy function (unit variance)."""
    return 0.5 * (visible**2).sum()


_ACTIVATIONS: dict[VisibleUnitType, Callable[[GroupBatchFloat], GroupBatchFloat]] = {
    VisibleUnitType.BINARY: torch.sigmoid,
    VisibleUnitType.SOFTMAX: column_softmax,
    VisibleUnitType.GAUSSIAN: lambda pre_activation: pre_activation,
}

_SAMPLERS: dict[VisibleUnitType, Callable[[GroupBatchFloat, UniformSampler], GroupBatchFloat]] = {
    VisibleUnitType.BINARY: sample_bernoulli,
    VisibleUnitType.SOFTMAX: sample_categorical,
    VisibleUnitType.GAUSSIAN: keep_mean,
}

_FREE_ENERGY_TERMS: dict[VisibleUnitType, Callable[[GroupBatchFloat], ScalarFloat]] = {
    VisibleUnitType.BINARY: no_free_energy_term,
    VisibleUnitType.SOFTMAX: no_free_energy_term,
    VisibleUnitType.GAUSSIAN: gaussian_free_energy_term,
}
