"""Tests for the model-independent training helpers."""
import os

import numpy as np
import pytest
import torch
from torch import nn

from boltz.common import Checkpointer, LookaheadMomentum, plot_learning_curves, shifted_batch_starts


class TestShiftedBatchStarts:
    """Tests for the mini-batch policy."""

    def test_even_split(self):
        assert list(shifted_batch_starts(9, 3)) == [0, 3, 6]

    def test_last_batch_moves_back(self):
        """The final batch is shifted so it is full, revisiting samples 7 and 8."""
        assert list(shifted_batch_starts(10, 3)) == [0, 3, 6, 7]

    def test_full_batch(self):
        assert list(shifted_batch_starts(5, 5)) == [0]

    @pytest.mark.parametrize("batch_size", [0, -1, 6])
    def test_invalid_batch_size(self, batch_size):
        with pytest.raises(ValueError):
            list(shifted_batch_starts(5, batch_size))


class TestLookaheadMomentum:
    """Tests for the momentum optimizer."""

    def test_update_sequence(self):
        """Lookahead plus step moves parameters by exactly the new velocity."""
        param = nn.Parameter(torch.tensor([1.], dtype=torch.float64))
        optimizer = LookaheadMomentum([param], lr=0.1, momentum=0.5)

        optimizer.lookahead()  # no velocity yet
        param.grad = torch.tensor([1.], dtype=torch.float64)
        optimizer.step()
        assert param.item() == pytest.approx(0.9)

        optimizer.lookahead()
        assert param.item() == pytest.approx(0.85)
        param.grad = torch.tensor([1.], dtype=torch.float64)
        optimizer.step()
        assert param.item() == pytest.approx(0.75)
        assert optimizer.state[param]["velocity"].item() == pytest.approx(-0.15)

    def test_zero_momentum_is_sgd(self):
        param = nn.Parameter(torch.tensor([2.], dtype=torch.float64))
        optimizer = LookaheadMomentum([param], lr=0.5, momentum=0.)
        for _ in range(3):
            optimizer.lookahead()
            param.grad = torch.tensor([1.], dtype=torch.float64)
            optimizer.step()
        assert param.item() == pytest.approx(0.5)

    def test_invalid_arguments(self):
        param = nn.Parameter(torch.zeros(1))
        with pytest.raises(ValueError):
            LookaheadMomentum([param], lr=-1.)
        with pytest.raises(ValueError):
            LookaheadMomentum([param], lr=0.1, momentum=1.5)


class TestCheckpointer:
    """Tests for periodic checkpointing."""

    def test_frequency(self, tmp_path):
        model = nn.Linear(2, 2)
        checkpointer = Checkpointer(model, str(tmp_path / "checkpoints"), "linear", frequency=2)
        saved = [checkpointer.maybe_checkpoint(epoch_ind) for epoch_ind in range(4)]
        assert saved[1] is None and saved[3] is None
        assert os.path.exists(saved[0]) and saved[0].endswith("linear_0000.pt")
        assert os.path.exists(saved[2])


class TestPlotting:
    """Smoke tests for plotting helpers."""

    def test_learning_curves(self):
        plot_learning_curves({"step": np.arange(3), "loss": np.array([3., 2., 1.])}, ["loss"])

    def test_missing_metric(self):
        with pytest.raises(KeyError):
            plot_learning_curves({"step": np.arange(3)}, ["loss"])
