"""This module contains functionalities for Restricted Boltzmann Machines.

The visible layer is made up of groups of binary, softmax or Gaussian units, while the hidden units are always
binary. Training uses (persistent) contrastive divergence with a hand-rolled gradient estimate; see RBMTrainer.
Sampling, optionally with one visible group clamped to evidence, runs Gibbs chains stored in the model itself.
"""
from .model import RBM
from .parameters import ParameterLayout
from .trainer import ContrastiveDivergenceConfig, MonitoringMethod, RBMTrainer, train
from .units import VisibleGroup, VisibleUnitType
