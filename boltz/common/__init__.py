"""This module contains functionalities that are not specific to any one model.

This mostly concerns the "Trainer" base class, checkpointing, the momentum optimizer and the batching policy on one
hand, and a few plotting helpers on the other.
"""
from .data import shifted_batch_starts
from .optim import LookaheadMomentum
from .training import Checkpointer, TrainerBase
from .utils import plot_learning_curves
