"""Shared fixtures. Plots go to a non-interactive backend so tests never open windows."""
import matplotlib

matplotlib.use("Agg")

import pytest
import torch

from boltz.rbm import RBM, VisibleUnitType


@pytest.fixture
def binary_rbm():
    """Initialized all-binary RBM with 6 visible and 4 hidden units."""
    rbm = RBM(num_hidden=4, num_visible=6, seed=0)
    rbm.initialize_neural_network(sigma=0.1)
    return rbm


@pytest.fixture
def mixed_rbm():
    """Initialized RBM with one group of each unit type: binary (4), softmax (3), gaussian (2)."""
    rbm = RBM(num_hidden=5, seed=1)
    rbm.add_visible_group(4, VisibleUnitType.BINARY)
    rbm.add_visible_group(3, VisibleUnitType.SOFTMAX)
    rbm.add_visible_group(2, VisibleUnitType.GAUSSIAN)
    rbm.initialize_neural_network(sigma=0.5)
    return rbm


@pytest.fixture
def binary_data():
    """(6 x 10) matrix of binary samples."""
    generator = torch.Generator().manual_seed(123)
    return (torch.rand(6, 10, generator=generator, dtype=torch.float64) > 0.5).to(torch.float64)


@pytest.fixture
def mixed_data():
    """(9 x 8) matrix matching mixed_rbm: binary rows, one-hot softmax rows, real-valued gaussian rows."""
    generator = torch.Generator().manual_seed(321)
    binary = (torch.rand(4, 8, generator=generator, dtype=torch.float64) > 0.5).to(torch.float64)
    labels = torch.randint(0, 3, (8,), generator=generator)
    one_hot = torch.nn.functional.one_hot(labels, 3).T.to(torch.float64)
    gaussian = torch.randn(2, 8, generator=generator, dtype=torch.float64)
    return torch.cat([binary, one_hot, gaussian], dim=0)
