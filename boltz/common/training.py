from __future__ import annotations

import os
from collections import defaultdict
from collections.abc import Iterable
from time import perf_counter
from typing import Generic, TypeVar

import numpy as np
import torch
from torch import nn
from torch.utils.tensorboard import SummaryWriter
from tqdm.auto import tqdm

from ..types import ScalarFloat, VisibleBatchFloat


Model = TypeVar("Model", bound=nn.Module)


class TrainerBase(Generic[Model]):
    def __init__(self,
                 model: Model,
                 n_epochs: int,
                 plot_every_n_epochs: int | None = None,
                 plot_figsize: tuple[int, int] = (12, 12),
                 plot_n_rows: int = 10,
                 checkpointer: Checkpointer | None = None,
                 verbose: bool = True,
                 use_tqdm: bool = False,
                 tensorboard_logdir: str | None = None,
                 tensorboard_figures: bool = False,
                 suppress_plots: bool = False):
        """Base class for training models on a (features x samples) matrix.

        Any Trainer for a specific kind of model should inherit from this and implement the batches and train_step
        functions. Unlike gradient-based trainers that call backward() on a loss, the step here is entirely up to the
        subclass, so it can compute gradients however it likes.

        Parameters:
            model: The model to train.
            n_epochs: Number of full iterations over the training data. 0 is allowed and trains nothing.
            plot_every_n_epochs: Every so often, it makes sense to e.g. plot some samples from the model. The Trainer
                                 class should implement the plot_examples method. Pass None to disable plotting.
            plot_figsize: Figure size for regular plots.
            plot_n_rows: Usually, we will generate n x n samples each time we plot something.
            checkpointer: If given, checkpoints will be stored at the desired frequency (determined by the checkpoint
                          object). In addition, we will save a checkpoint with _final suffix at the end of training.
            verbose: If True, report on training progress throughout. This includes all monitoring values.
            use_tqdm: If True, and verbose is also True, show a progress bar over epochs.
            tensorboard_logdir: If given, monitoring values are also logged to this directory for visualization
                                with TensorBoard. Pass None to disable logging.
            tensorboard_figures: If True, save figures generated in plot_examples to tensorboard logs. Does nothing if
                                 tensorboard_logdir is not given.
            suppress_plots: If True, and tensorboard_figures is True, figures will *only* be stored in tensorboard, and
                            not plotted to output (e.g. in a notebook). No effect if tensorboard_figures is False.
        """
        if n_epochs < 0:
            raise ValueError(f"n_epochs must be non-negative, got {n_epochs}.")
        self.model = model
        self.n_epochs = n_epochs

        self.plot_every_n_epochs = plot_every_n_epochs
        self.plot_figsize = plot_figsize
        self.plot_n_rows = plot_n_rows

        self.checkpointer = checkpointer
        self.verbose = verbose
        self.use_tqdm = use_tqdm

        if tensorboard_logdir is not None:
            self.writer = SummaryWriter(tensorboard_logdir)
        else:
            self.writer = None
        self.tensorboard_figures = tensorboard_figures
        self.suppress_plots = suppress_plots

        self.global_step = 0

    def train_model(self,
                    features: VisibleBatchFloat) -> dict[str, np.ndarray]:
        """The main training loop + housekeeping.

        Parameters:
            features: Training data, one sample per column.

        Returns:
            Dictionary mapping each metric name to a numpy array of its recorded values. Metrics are only recorded on
            the steps where train_step returns them; the "step" entry holds the corresponding global step indices.
        """
        features = self.prepare(features)
        steps_per_epoch = sum(1 for _ in self.batches(features))
        if self.verbose:
            print(f"Running {self.n_epochs} epochs at {steps_per_epoch} steps per epoch.")

        full_metrics = defaultdict(list)
        for epoch_ind in tqdm(iterable=range(self.n_epochs), desc="Overall progress", leave=True,
                              disable=not self.use_tqdm or not self.verbose):
            if self.plot_every_n_epochs is not None and not epoch_ind % self.plot_every_n_epochs:
                self.plot_examples(epoch_ind)
            self.train_epoch(features, epoch_ind, full_metrics)
            if self.checkpointer is not None:
                self.checkpointer.maybe_checkpoint(epoch_ind)

        if self.checkpointer is not None:
            self.checkpointer.save("final")
        if self.writer is not None:
            self.writer.flush()
        return {key: np.array(values) for key, values in full_metrics.items()}

    def train_epoch(self,
                    features: VisibleBatchFloat,
                    epoch_ind: int,
                    full_metrics: defaultdict[str, list[float]]):
        """One pass over the training data. full_metrics is extended in-place."""
        start_time = perf_counter()
        for batch in self.batches(features):
            batch_metrics = self.train_step(batch)
            if batch_metrics:
                self.record_metrics(full_metrics, batch_metrics, epoch_ind)
            self.global_step += 1

        if self.verbose and not self.use_tqdm:
            print(f"Epoch {epoch_ind + 1} done. Time taken: {perf_counter() - start_time:.4g} seconds")

    def record_metrics(self,
                       full_metrics: defaultdict[str, list[float]],
                       batch_metrics: dict[str, ScalarFloat | float],
                       epoch_ind: int):
        """Store, print and optionally log one step's worth of metrics."""
        full_metrics["step"].append(self.global_step)
        for key, value in batch_metrics.items():
            value = value.item() if isinstance(value, torch.Tensor) else value
            full_metrics[key].append(value)
            if self.writer is not None:
                self.writer.add_scalar(key, value, self.global_step)
            if self.verbose:
                print(f"Epoch {epoch_ind}: {key} = {value:.6g}")

    def prepare(self,
                features: VisibleBatchFloat) -> VisibleBatchFloat:
        """Check/convert the training data and set up anything that depends on it. Does nothing by default."""
        return features

    def batches(self,
                features: VisibleBatchFloat) -> Iterable[VisibleBatchFloat]:
        """The mini-batches making up one epoch. Model-dependent, so not implemented here."""
        raise NotImplementedError

    def train_step(self,
                   batch: VisibleBatchFloat) -> dict[str, ScalarFloat]:
        """Main logic for one update. Not implemented as it is model-dependent.

        Return:
            A dictionary mapping names to values that should be recorded for this step. Return an empty dictionary on
            steps where nothing should be recorded.
        """
        raise NotImplementedError

    def plot_examples(self,
                      epoch_ind: int | None = None):
        """This function is called every couple epochs. You can really do whatever you want in here.

        But it is intended to visually show model progress, e.g. through plotting some generated samples.
        """
        pass


class Checkpointer:
    def __init__(self,
                 model: nn.Module,
                 directory: str,
                 checkpoint_name: str,
                 frequency: int):
        """Regularly saves model weights (via state_dict) during training.

        Parameters:
            model: Model to store checkpoints for.
            directory: Path to store checkpoints to. Will be created if non-existent.
            checkpoint_name: Base name for each checkpoint file. Epoch indices will be appended.
            frequency: Will create a checkpoint every this many epochs.
        """
        if frequency <= 0:
            raise ValueError(f"Checkpoint frequency must be positive, got {frequency}.")
        self.model = model
        self.directory = directory
        self.checkpoint_name = checkpoint_name
        self.frequency = frequency
        os.makedirs(directory, exist_ok=True)

    def maybe_checkpoint(self,
                         epoch_ind: int) -> str | None:
        """Create a new checkpoint if epoch_ind is a multiple of the frequency. Returns the path if one was saved."""
        if not epoch_ind % self.frequency:
            return self.save(f"{epoch_ind:04}")
        return None

    def save(self,
             suffix: str) -> str:
        path = os.path.join(self.directory, f"{self.checkpoint_name}_{suffix}.pt")
        torch.save(self.model.state_dict(), path)
        return path
