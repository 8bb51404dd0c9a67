from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import numpy as np
import torch
from torch import nn

from .parameters import ParameterLayout
from .units import VisibleGroup, VisibleUnitType
from ..types import (GroupBatchFloat, HiddenBatchFloat, HiddenFloat, ParameterVectorFloat, ScalarFloat,
                     VisibleBatchFloat, VisibleFloat, WeightMatrixFloat)


class RBM(nn.Module):
    def __init__(self,
                 num_hidden: int,
                 num_visible: int | None = None,
                 visible_unit_type: VisibleUnitType | str = VisibleUnitType.BINARY,
                 seed: int | None = None,
                 dtype: torch.dtype = torch.float64,
                 device: torch.device | str = "cpu"):
        """RBM with binary hidden units and any number of visible unit groups.

        Visible groups can be Binary, Softmax or Gaussian (see VisibleUnitType). Groups are added via
        add_visible_group, after which initialize_neural_network creates the parameters. Passing num_visible here is
        a shortcut for a model with a single visible group.

        All batches are column-major: rows are units, columns are samples. The model keeps one persistent Gibbs
        chain (hidden_state/visible_state) with as many columns as the current batch size. This is used by persistent
        contrastive divergence as well as by the sampling functions.

        Parameters:
            num_hidden: Number of hidden units.
            num_visible: If given, immediately add one visible group of this size.
            visible_unit_type: Type of the group added via num_visible. Ignored otherwise.
            seed: Seed for the model's random generator. All stochastic operations use this generator, so two models
                  with the same seed and the same sequence of calls produce the same results. Pass None for a
                  non-deterministic seed.
            dtype: Floating point type for parameters and states.
            device: Where parameters and states are created. Calling .to() only moves tensors that already exist, so
                    before initialize_neural_network it just records the new device here.
        """
        super().__init__()
        if num_hidden <= 0:
            raise ValueError(f"num_hidden must be positive, got {num_hidden}.")
        self.num_hidden = num_hidden
        self.num_visible = 0
        self.visible_groups: list[VisibleGroup] = []
        self.param_dtype = dtype
        self.target_device = torch.device(device)
        self.layout: ParameterLayout | None = None
        self.batch_size = 0

        self.generator = torch.Generator()
        if seed is None:
            self.generator.seed()
        else:
            self.generator.manual_seed(seed)

        self.register_parameter("params", None)
        # the chain is not part of the model state; it is reset whenever the batch size changes anyway
        self.register_buffer("hidden_state", None, persistent=False)
        self.register_buffer("visible_state", None, persistent=False)

        if num_visible is not None:
            self.add_visible_group(num_visible, visible_unit_type)

    @property
    def num_visible_groups(self) -> int:
        return len(self.visible_groups)

    @property
    def device(self) -> torch.device:
        if self.params is not None:
            return self.params.device
        return self.target_device

    def _apply(self, fn, *args, **kwargs):
        # .to() on a model without parameters has nothing to move; remember the device for initialize_neural_network
        self.target_device = fn(torch.empty(0, device=self.target_device)).device
        return super()._apply(fn, *args, **kwargs)

    def add_visible_group(self,
                          size: int,
                          unit_type: VisibleUnitType | str):
        """Append a group of visible units. Only allowed before initialize_neural_network."""
        if self.params is not None:
            raise RuntimeError("Visible groups cannot be added after the parameters have been initialized.")
        if size <= 0:
            raise ValueError(f"Visible group size must be positive, got {size}.")
        offset = self.visible_groups[-1].offset + self.visible_groups[-1].size if self.visible_groups else 0
        self.visible_groups.append(VisibleGroup(size, VisibleUnitType(unit_type), offset))
        self.num_visible += size

    def initialize_neural_network(self,
                                  sigma: float = 0.01):
        """Create the parameter vector and fill it with N(0, sigma^2) noise."""
        if not self.visible_groups:
            raise RuntimeError("Add at least one visible group before initializing the parameters.")
        self.layout = ParameterLayout(self.num_visible, self.num_hidden)
        initial = sigma * torch.randn(self.layout.num_params, generator=self.generator, dtype=self.param_dtype)
        self.params = nn.Parameter(initial.to(self.device))

    def _require_layout(self) -> ParameterLayout:
        if self.layout is None or self.params is None:
            raise RuntimeError("RBM parameters are not initialized; call initialize_neural_network first.")
        return self.layout

    def weights_view(self,
                     buffer: ParameterVectorFloat | None = None) -> WeightMatrixFloat:
        """(num_hidden x num_visible) view into the parameters, or into a parameter-shaped buffer if given."""
        return self._require_layout().weights(self.params if buffer is None else buffer)

    def visible_bias_view(self,
                          buffer: ParameterVectorFloat | None = None) -> VisibleFloat:
        return self._require_layout().visible_bias(self.params if buffer is None else buffer)

    def hidden_bias_view(self,
                         buffer: ParameterVectorFloat | None = None) -> HiddenFloat:
        return self._require_layout().hidden_bias(self.params if buffer is None else buffer)

    def set_batch_size(self,
                       batch_size: int):
        """Resize the chain to batch_size columns. A new size resets the chain; the same size is a no-op."""
        if batch_size == self.batch_size:
            return
        if batch_size <= 0:
            raise ValueError(f"Batch size must be positive, got {batch_size}.")
        self.batch_size = batch_size
        self.hidden_state = torch.zeros(self.num_hidden, batch_size, dtype=self.param_dtype, device=self.device)
        self.visible_state = torch.zeros(self.num_visible, batch_size, dtype=self.param_dtype, device=self.device)
        self.reset_chain()

    def reset_chain(self):
        """Set the visible chain state to uniformly random binary values."""
        self.visible_state.copy_(self.uniform(tuple(self.visible_state.shape)) > 0.5)

    def uniform(self,
                shape: tuple[int, ...]) -> torch.Tensor:
        """Uniform [0, 1) draws from the model's generator, moved to the model's device."""
        return torch.rand(shape, generator=self.generator, dtype=self.param_dtype).to(self.device)

    @torch.no_grad()
    def mean_hidden(self,
                    visible: VisibleBatchFloat,
                    out: HiddenBatchFloat | None = None) -> HiddenBatchFloat:
        """Get conditional probabilities p(h=1|v)."""
        pre_activation = self.weights_view() @ visible + self.hidden_bias_view()[:, None]
        return torch.sigmoid(pre_activation, out=out)

    @torch.no_grad()
    def mean_visible(self,
                     hidden: HiddenBatchFloat,
                     out: VisibleBatchFloat | None = None) -> VisibleBatchFloat:
        """Get conditional means E[v|h], using each group's activation."""
        means = self.weights_view().T @ hidden + self.visible_bias_view()[:, None]
        for group in self.visible_groups:
            means[group.rows] = group.unit_type.activate(means[group.rows])
        if out is None:
            return means
        return out.copy_(means)

    @torch.no_grad()
    def sample_hidden(self,
                      mean: HiddenBatchFloat,
                      out: HiddenBatchFloat | None = None) -> HiddenBatchFloat:
        """Bernoulli samples for the hidden units. out may be the same tensor as mean."""
        samples = (self.uniform(tuple(mean.shape)) < mean).to(mean.dtype)
        if out is None:
            return samples
        return out.copy_(samples)

    @torch.no_grad()
    def sample_visible(self,
                       mean: VisibleBatchFloat,
                       out: VisibleBatchFloat | None = None,
                       group_index: int | None = None) -> VisibleBatchFloat:
        """Sample visible units given their means.

        Parameters:
            mean: Visible means, as returned by mean_visible.
            out: Where to write the samples; may be the same tensor as mean. If not given, a copy of mean is used.
                 Rows belonging to groups that are not sampled keep whatever out contained before.
            group_index: If given, only this group is sampled. Otherwise all groups are, in order.
        """
        if out is None:
            out = mean.clone()
        groups = self.visible_groups if group_index is None else [self._group(group_index)]
        for group in groups:
            out[group.rows] = group.unit_type.sample(mean[group.rows], self.uniform)
        return out

    def gibbs_step(self,
                   sample_visible_units: bool = True,
                   skip_groups: Sequence[int] = ()):
        """Advance the internal chain by one Gibbs step.

        The order is fixed: mean_hidden, sample_hidden, mean_visible and then (optionally) sample_visible.

        Parameters:
            sample_visible_units: If False, the visible state is left at its mean.
            skip_groups: Indices of groups that should not be sampled even if sample_visible_units is True.
        """
        self.mean_hidden(self.visible_state, out=self.hidden_state)
        self.sample_hidden(self.hidden_state, out=self.hidden_state)
        self.mean_visible(self.hidden_state, out=self.visible_state)
        if sample_visible_units:
            for index in range(self.num_visible_groups):
                if index not in skip_groups:
                    self.sample_visible(self.visible_state, out=self.visible_state, group_index=index)

    def sample(self,
               num_gibbs_steps: int,
               batch_size: int,
               sample_last_visible: bool = False) -> VisibleBatchFloat:
        """Run the chain and return (a copy of) the visible state.

        The chain continues from its current state unless batch_size differs from the current one, in which case it
        starts from random binary values.

        Parameters:
            num_gibbs_steps: Chain length.
            batch_size: Number of chains run in parallel, i.e. number of samples returned.
            sample_last_visible: If False, the last step stops at the visible means. These are usually less noisy
                                 than a sample.
        """
        self._require_layout()
        self.set_batch_size(batch_size)
        for step in range(num_gibbs_steps):
            self.gibbs_step(sample_visible_units=step < num_gibbs_steps - 1 or sample_last_visible)
        return self.visible_state.clone()

    def sample_group(self,
                     group_index: int,
                     num_gibbs_steps: int,
                     batch_size: int) -> GroupBatchFloat:
        """Like sample, but only returns the rows of one visible group."""
        group = self._group(group_index)
        self.sample(num_gibbs_steps, batch_size)
        return self.visible_state[group.rows].clone()

    def sample_with_evidence(self,
                             evidence_group: int,
                             evidence: GroupBatchFloat,
                             num_gibbs_steps: int) -> VisibleBatchFloat:
        """Sample the other visible groups while clamping one group to observed values.

        The batch size becomes the number of evidence columns. The evidence is written into the chain before the
        first step and again after every step, so the clamped rows always equal the evidence.

        Parameters:
            evidence_group: Index of the group that is observed.
            evidence: (group size x batch) matrix of observed values.
            num_gibbs_steps: Chain length. As in sample, the other groups are left at their means after the last step.
        """
        group = self._group(evidence_group)
        self._require_layout()
        evidence = self.as_matrix(evidence, group.size, "Evidence")
        self.set_batch_size(evidence.shape[1])

        self.visible_state[group.rows] = evidence
        for step in range(num_gibbs_steps):
            self.gibbs_step(sample_visible_units=step < num_gibbs_steps - 1, skip_groups=(evidence_group,))
            self.visible_state[group.rows] = evidence
        return self.visible_state.clone()

    def sample_group_with_evidence(self,
                                   group_index: int,
                                   evidence_group: int,
                                   evidence: GroupBatchFloat,
                                   num_gibbs_steps: int) -> GroupBatchFloat:
        """Like sample_with_evidence, but only returns the rows of group group_index."""
        group = self._group(group_index)
        self.sample_with_evidence(evidence_group, evidence, num_gibbs_steps)
        return self.visible_state[group.rows].clone()

    @torch.no_grad()
    def transform(self,
                  features: VisibleBatchFloat) -> HiddenBatchFloat:
        """Hidden unit probabilities for a feature matrix, e.g. as input for another model."""
        self._require_layout()
        return self.mean_hidden(self.as_matrix(features, self.num_visible))

    def free_energy(self,
                    visible: VisibleBatchFloat) -> ScalarFloat:
        """Average free energy of a batch.

        F(v) = -b^T v - sum_j softplus(W_j v + c_j), plus 0.5 * v^2 for Gaussian units. This is differentiable with
        respect to the parameters, and its gradient is exactly what free_energy_gradients computes for the positive
        phase.
        """
        self._require_layout()
        visible = self.as_matrix(visible, self.num_visible)
        self.set_batch_size(visible.shape[1])

        bias_term = (self.visible_bias_view() @ visible).sum()
        softplus_term = nn.functional.softplus(self.weights_view() @ visible
                                               + self.hidden_bias_view()[:, None]).sum()
        energy = -(bias_term + softplus_term) / self.batch_size
        for group in self.visible_groups:
            energy = energy + group.unit_type.free_energy_term(visible[group.rows]) / self.batch_size
        return energy

    @torch.no_grad()
    def free_energy_gradients(self,
                              visible: VisibleBatchFloat,
                              gradients: ParameterVectorFloat | None = None,
                              positive_phase: bool = True,
                              hidden_mean: HiddenBatchFloat | None = None) -> ParameterVectorFloat:
        """Gradients of the average free energy with respect to the parameters.

        Parameters:
            visible: Batch to compute gradients for.
            gradients: Parameter-shaped vector to write to. A new zero vector is used if not given.
            positive_phase: If True, gradients is overwritten with dF/dparams. Otherwise, -dF/dparams is *added*.
                            Calling this on the data (positive) and then on the model samples (negative) gives the
                            contrastive divergence estimate of the negative log-likelihood gradient.
            hidden_mean: p(h|visible), if already available. Computed here otherwise.

        Returns:
            The gradient vector.
        """
        layout = self._require_layout()
        visible = self.as_matrix(visible, self.num_visible)
        self.set_batch_size(visible.shape[1])
        if gradients is None:
            gradients = torch.zeros_like(self.params)
        layout.check(gradients)
        if hidden_mean is None:
            hidden_mean = self.mean_hidden(visible)

        sign = -1. if positive_phase else 1.
        weight_term = sign * (hidden_mean @ visible.T) / self.batch_size
        visible_bias_term = sign * visible.sum(dim=1) / self.batch_size
        hidden_bias_term = sign * hidden_mean.sum(dim=1) / self.batch_size
        if positive_phase:
            self.weights_view(gradients).copy_(weight_term)
            self.visible_bias_view(gradients).copy_(visible_bias_term)
            self.hidden_bias_view(gradients).copy_(hidden_bias_term)
        else:
            self.weights_view(gradients).add_(weight_term)
            self.visible_bias_view(gradients).add_(visible_bias_term)
            self.hidden_bias_view(gradients).add_(hidden_bias_term)
        return gradients

    @torch.no_grad()
    def reconstruction_error(self,
                             visible: VisibleBatchFloat) -> ScalarFloat:
        """Squared error between a batch and its reconstruction v -> h (sampled) -> E[v|h], averaged over columns."""
        self._require_layout()
        visible = self.as_matrix(visible, self.num_visible)
        self.set_batch_size(visible.shape[1])

        reconstruction = self.mean_visible(self.sample_hidden(self.mean_hidden(visible)))
        return ((reconstruction - visible)**2).sum() / self.batch_size

    @torch.no_grad()
    def pseudo_likelihood(self,
                          visible: VisibleBatchFloat) -> ScalarFloat:
        """Stochastic estimate of the log pseudo-likelihood. Only works if all visible units are binary.

        For each column, one randomly chosen unit is flipped, and the free energies before and after are compared.
        The input is not modified.
        """
        if any(group.unit_type != VisibleUnitType.BINARY for group in self.visible_groups):
            raise NotImplementedError("Pseudo-likelihood is only supported for binary visible units.")
        self._require_layout()
        visible = self.as_matrix(visible, self.num_visible)
        self.set_batch_size(visible.shape[1])

        indices = torch.randint(0, self.num_visible, (self.batch_size,), generator=self.generator).to(self.device)
        columns = torch.arange(self.batch_size, device=self.device)
        flipped = visible.clone()
        flipped[indices, columns] = 1 - flipped[indices, columns]

        energy_difference = self.free_energy(visible) - self.free_energy(flipped)
        # log(1 / (1 + exp(x))) == -softplus(x)
        return -self.num_visible * nn.functional.softplus(energy_difference)

    def get_extra_state(self) -> dict[str, Any]:
        return {"num_hidden": self.num_hidden,
                "visible_group_sizes": [group.size for group in self.visible_groups],
                "visible_group_types": [group.unit_type.value for group in self.visible_groups]}

    def set_extra_state(self,
                        state: dict[str, Any]):
        """Check that a loaded state matches this model's structure."""
        if state != self.get_extra_state():
            raise ValueError(f"State was saved from an RBM with structure {state}, but this RBM has structure "
                             f"{self.get_extra_state()}.")

    @classmethod
    def from_state_dict(cls,
                        state_dict: dict[str, Any],
                        **kwargs) -> RBM:
        """Build an RBM with the structure recorded in state_dict and load its parameters.

        Parameters:
            state_dict: As returned by state_dict().
            kwargs: Passed to the constructor (e.g. seed, dtype).
        """
        structure = state_dict["_extra_state"]
        model = cls(structure["num_hidden"], **kwargs)
        for size, unit_type in zip(structure["visible_group_sizes"], structure["visible_group_types"]):
            model.add_visible_group(size, unit_type)
        model.initialize_neural_network()
        model.load_state_dict(state_dict)
        return model

    def save(self,
             path: str):
        torch.save(self.state_dict(), path)

    @classmethod
    def load(cls,
             path: str,
             **kwargs) -> RBM:
        return cls.from_state_dict(torch.load(path, map_location="cpu"), **kwargs)

    def _group(self,
               index: int) -> VisibleGroup:
        if not 0 <= index < self.num_visible_groups:
            raise IndexError(f"Visible group index ({index}) out of bounds ({self.num_visible_groups} groups).")
        return self.visible_groups[index]

    def as_matrix(self,
                  data: torch.Tensor | np.ndarray,
                  n_rows: int,
                  name: str = "Features") -> torch.Tensor:
        """Check and convert a (units x batch) matrix to the model's dtype and device."""
        if data is None:
            raise ValueError(f"Invalid (None) {name.lower()}.")
        data = torch.as_tensor(data, dtype=self.param_dtype, device=self.device)
        if data.dim() != 2:
            raise ValueError(f"{name} must be a 2d (units x batch) matrix, got shape {tuple(data.shape)}.")
        if data.shape[0] != n_rows:
            raise ValueError(f"Number of rows in {name.lower()} ({data.shape[0]}) must match the number of units "
                             f"({n_rows}).")
        if data.shape[1] == 0:
            raise ValueError(f"{name} must contain at least one column.")
        return data
