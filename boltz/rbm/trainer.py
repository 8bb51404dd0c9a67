from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum

import numpy as np
import torch

from .model import RBM
from .units import VisibleUnitType
from ..common import LookaheadMomentum, TrainerBase, shifted_batch_starts
from ..types import ParameterVectorFloat, ScalarFloat, VisibleBatchFloat
from ..visualization import plot_sample_grid


class MonitoringMethod(Enum):
    RECONSTRUCTION_ERROR = "reconstruction_error"
    PSEUDO_LIKELIHOOD = "pseudo_likelihood"


@dataclass
class ContrastiveDivergenceConfig:
    """Hyperparameters for RBM training.

    Parameters:
        cd_num_steps: Number of Gibbs steps per update (the k in CD-k).
        persistent: If True, use persistent CD: the chain continues from where the previous update left it. Otherwise
                    it restarts from the data batch for every update.
        sample_visible_in_chain: If True, visible units are sampled in each Gibbs step of the chain. Otherwise they
                                 are left at their means, which gives less noisy gradients.
        l1_coefficient, l2_coefficient: Regularization strengths. Only applied to the weights, not the biases.
        mini_batch_size: Number of samples per update. 0 means the full dataset.
        max_epochs: Number of passes over the data. 0 trains nothing.
        learning_rate: Initial learning rate.
        learning_rate_decay: The learning rate is multiplied by this before *every* update (including the first).
        momentum: Momentum for the lookahead updates, see LookaheadMomentum.
        monitoring_method: What to report during training. PSEUDO_LIKELIHOOD needs all-binary visible units.
        monitoring_interval: Report every this many updates. The count runs across epochs.
    """
    cd_num_steps: int = 1
    persistent: bool = True
    sample_visible_in_chain: bool = False
    l1_coefficient: float = 0.
    l2_coefficient: float = 0.
    mini_batch_size: int = 0
    max_epochs: int = 1
    learning_rate: float = 0.1
    learning_rate_decay: float = 1.
    momentum: float = 0.9
    monitoring_method: MonitoringMethod | str = MonitoringMethod.RECONSTRUCTION_ERROR
    monitoring_interval: int = 10

    def __post_init__(self):
        self.monitoring_method = MonitoringMethod(self.monitoring_method)
        if self.cd_num_steps < 1:
            raise ValueError(f"cd_num_steps must be at least 1, got {self.cd_num_steps}.")
        if self.l1_coefficient < 0 or self.l2_coefficient < 0:
            raise ValueError("Regularization coefficients must be non-negative, got "
                             f"l1={self.l1_coefficient}, l2={self.l2_coefficient}.")
        if self.mini_batch_size < 0:
            raise ValueError(f"mini_batch_size must be non-negative, got {self.mini_batch_size}.")
        if self.max_epochs < 0:
            raise ValueError(f"max_epochs must be non-negative, got {self.max_epochs}.")
        if self.learning_rate_decay <= 0:
            raise ValueError(f"learning_rate_decay must be positive, got {self.learning_rate_decay}.")
        if self.monitoring_interval < 1:
            raise ValueError(f"monitoring_interval must be at least 1, got {self.monitoring_interval}.")


class RBMTrainer(TrainerBase[RBM]):
    def __init__(self,
                 model: RBM,
                 config: ContrastiveDivergenceConfig | None = None,
                 image_shape: tuple[int, ...] | None = None,
                 plot_chain_length: int = 100,
                 **kwargs):
        """Trainer for RBMs using (persistent) contrastive divergence.

        Each update goes like this:
            1. Momentum lookahead on the parameters.
            2. Positive phase: free energy gradients on the data batch.
            3. k Gibbs steps on the model's chain.
            4. Negative phase: free energy gradients on the chain state, with opposite sign.
            5. L1/L2 penalties on the weight gradients.
            6. Parameter update, then learning rate decay for the next update.

        Parameters:
            model: The RBM to train. Its parameters must be initialized already.
            config: Training hyperparameters. Defaults are used if not given.
            image_shape: If given, the visible units are taken to be flattened images of this shape (e.g. (28, 28)).
                         This is only used to plot samples via plot_every_n_epochs.
            plot_chain_length: Gibbs steps used to generate plotted samples.
            kwargs: Passed to TrainerBase (verbosity, tensorboard, checkpointing, plotting...). n_epochs is taken
                    from config.max_epochs.
        """
        config = config if config is not None else ContrastiveDivergenceConfig()
        super().__init__(model, n_epochs=config.max_epochs, **kwargs)
        self.config = config
        self.image_shape = image_shape
        self.plot_chain_length = plot_chain_length

        if self.model.params is None:
            raise RuntimeError("RBM parameters are not initialized; call initialize_neural_network first.")
        if (config.monitoring_method == MonitoringMethod.PSEUDO_LIKELIHOOD
                and any(group.unit_type != VisibleUnitType.BINARY for group in model.visible_groups)):
            raise NotImplementedError("Pseudo-likelihood monitoring is only supported for binary visible units.")
        if image_shape is not None and int(np.prod(image_shape)) != model.num_visible:
            raise ValueError(f"image_shape {image_shape} does not match {model.num_visible} visible units.")

        # the scheduler steps *after* each update, so start one decay step ahead
        self.optimizer = LookaheadMomentum([model.params], lr=config.learning_rate * config.learning_rate_decay,
                                           momentum=config.momentum)
        self.scheduler = torch.optim.lr_scheduler.ExponentialLR(self.optimizer, gamma=config.learning_rate_decay)
        self.gradients = torch.zeros_like(model.params)
        self.mini_batch_size = config.mini_batch_size

    def prepare(self,
                features: VisibleBatchFloat) -> VisibleBatchFloat:
        """Check the data, fix the batch size and start the chain at the first batch."""
        features = self.model.as_matrix(features, self.model.num_visible)
        n_samples = features.shape[1]
        batch_size = self.config.mini_batch_size or n_samples
        if batch_size > n_samples:
            raise ValueError(f"mini_batch_size ({batch_size}) is larger than the training set ({n_samples}).")
        self.mini_batch_size = batch_size

        self.model.set_batch_size(batch_size)
        self.model.visible_state.copy_(features[:, :batch_size])
        return features

    def batches(self,
                features: VisibleBatchFloat) -> Iterator[VisibleBatchFloat]:
        for start in shifted_batch_starts(features.shape[1], self.mini_batch_size):
            yield features[:, start:start + self.mini_batch_size]

    @torch.no_grad()
    def train_step(self,
                   batch: VisibleBatchFloat) -> dict[str, ScalarFloat | float]:
        learning_rate = self.optimizer.param_groups[0]["lr"]
        self.optimizer.lookahead()
        self.model.params.grad = self.contrastive_divergence(batch)
        self.optimizer.step()
        self.scheduler.step()

        if self.global_step % self.config.monitoring_interval:
            return {}
        return {self.config.monitoring_method.value: self.monitor(batch),
                "learning_rate": learning_rate}

    @torch.no_grad()
    def contrastive_divergence(self,
                               batch: VisibleBatchFloat) -> ParameterVectorFloat:
        """CD-k estimate of the negative log-likelihood gradient for one batch.

        The result is written into (and returned as) self.gradients.
        """
        model = self.model
        model.set_batch_size(batch.shape[1])
        hidden, visible = model.hidden_state, model.visible_state

        model.mean_hidden(batch, out=hidden)
        model.free_energy_gradients(batch, self.gradients, positive_phase=True, hidden_mean=hidden)

        for step in range(self.config.cd_num_steps):
            # for plain CD, the first step starts from the hidden means of the data we just computed
            if step > 0 or self.config.persistent:
                model.mean_hidden(visible, out=hidden)
            model.sample_hidden(hidden, out=hidden)
            model.mean_visible(hidden, out=visible)
            if self.config.sample_visible_in_chain:
                model.sample_visible(visible, out=visible)

        model.mean_hidden(visible, out=hidden)
        model.free_energy_gradients(visible, self.gradients, positive_phase=False, hidden_mean=hidden)
        self.regularize(self.gradients)
        return self.gradients

    @torch.no_grad()
    def regularize(self,
                   gradients: ParameterVectorFloat):
        """Add L2 (l2 * W) and L1 (l1 * sign(W)) penalty gradients to the weight block. Biases are left alone."""
        weight_gradients = self.model.weights_view(gradients)
        weights = self.model.weights_view()
        if self.config.l2_coefficient > 0:
            weight_gradients.add_(weights, alpha=self.config.l2_coefficient)
        if self.config.l1_coefficient > 0:
            weight_gradients.add_(torch.sign(weights), alpha=self.config.l1_coefficient)

    def monitor(self,
                batch: VisibleBatchFloat) -> ScalarFloat:
        if self.config.monitoring_method == MonitoringMethod.PSEUDO_LIKELIHOOD:
            return self.model.pseudo_likelihood(batch)
        return self.model.reconstruction_error(batch)

    def plot_examples(self,
                      epoch_ind: int | None = None):
        """Plot a grid of samples from the model without disturbing the training chain."""
        if self.image_shape is None:
            return
        chain = self.model.visible_state.clone()
        samples = self.model.sample(self.plot_chain_length, self.plot_n_rows**2)
        self.model.set_batch_size(chain.shape[1])
        self.model.visible_state.copy_(chain)

        plot_sample_grid(samples, self.image_shape, figure_size=self.plot_figsize, title="Samples",
                         n_rows=self.plot_n_rows, writer=self.writer, epoch_ind=epoch_ind,
                         tensorboard_figures=self.tensorboard_figures, suppress_plots=self.suppress_plots)


def train(model: RBM,
          features: VisibleBatchFloat,
          config: ContrastiveDivergenceConfig | None = None,
          **trainer_kwargs) -> dict[str, np.ndarray]:
    """Train an RBM on a (visible units x samples) feature matrix.

    Parameters:
        model: Initialized RBM. Trained in-place.
        features: Training data, one sample per column.
        config: Training hyperparameters.
        trainer_kwargs: Passed on to RBMTrainer.

    Returns:
        Monitoring values and learning rates at each monitored step, see TrainerBase.train_model.
    """
    return RBMTrainer(model, config, **trainer_kwargs).train_model(features)
