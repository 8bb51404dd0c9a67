"""Tests for contrastive divergence training."""
import os

import pytest
import torch

from boltz.common import Checkpointer
from boltz.rbm import RBM, ContrastiveDivergenceConfig, MonitoringMethod, RBMTrainer, train


def quiet_train(rbm, features, **config_kwargs):
    return train(rbm, features, ContrastiveDivergenceConfig(**config_kwargs), verbose=False)


class TestConfig:
    """Tests for hyperparameter validation."""

    def test_defaults(self):
        config = ContrastiveDivergenceConfig()
        assert config.cd_num_steps == 1
        assert config.persistent
        assert config.momentum == 0.9
        assert config.monitoring_method is MonitoringMethod.RECONSTRUCTION_ERROR

    def test_monitoring_method_from_string(self):
        config = ContrastiveDivergenceConfig(monitoring_method="pseudo_likelihood")
        assert config.monitoring_method is MonitoringMethod.PSEUDO_LIKELIHOOD

    @pytest.mark.parametrize("kwargs", [dict(cd_num_steps=0), dict(l1_coefficient=-1.), dict(mini_batch_size=-2),
                                        dict(max_epochs=-1), dict(learning_rate_decay=0.),
                                        dict(monitoring_interval=0), dict(monitoring_method="accuracy")])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            ContrastiveDivergenceConfig(**kwargs)


class TestTrainer:
    """Tests for the training loop."""

    def test_zero_epochs_changes_nothing(self, binary_rbm, binary_data):
        before = binary_rbm.params.detach().clone()
        metrics = quiet_train(binary_rbm, binary_data, max_epochs=0)
        assert torch.equal(binary_rbm.params, before)
        assert metrics == {}

    def test_chain_starts_at_data(self, binary_rbm, binary_data):
        RBMTrainer(binary_rbm, ContrastiveDivergenceConfig(mini_batch_size=4), verbose=False).prepare(binary_data)
        assert torch.equal(binary_rbm.visible_state, binary_data[:, :4])

    def test_training_changes_parameters(self, mixed_rbm, mixed_data):
        before = mixed_rbm.params.detach().clone()
        quiet_train(mixed_rbm, mixed_data, max_epochs=2, mini_batch_size=3, cd_num_steps=2)
        assert not torch.equal(mixed_rbm.params, before)
        assert torch.isfinite(mixed_rbm.params).all()

    def test_monitoring_interval(self, binary_rbm, binary_data):
        """10 samples in batches of 3 make 4 steps per epoch; every third step is recorded."""
        metrics = quiet_train(binary_rbm, binary_data, max_epochs=2, mini_batch_size=3, monitoring_interval=3)
        assert metrics["step"].tolist() == [0, 3, 6]
        assert len(metrics["reconstruction_error"]) == 3

    def test_pseudo_likelihood_monitoring(self, binary_rbm, binary_data):
        metrics = quiet_train(binary_rbm, binary_data, max_epochs=3, monitoring_method="pseudo_likelihood",
                              monitoring_interval=1)
        assert len(metrics["pseudo_likelihood"]) == 3
        assert (metrics["pseudo_likelihood"] <= 0).all()

    def test_pseudo_likelihood_monitoring_needs_binary_units(self, mixed_rbm):
        config = ContrastiveDivergenceConfig(monitoring_method=MonitoringMethod.PSEUDO_LIKELIHOOD)
        with pytest.raises(NotImplementedError):
            RBMTrainer(mixed_rbm, config, verbose=False)

    def test_learning_rate_decays_before_every_update(self, binary_rbm, binary_data):
        metrics = quiet_train(binary_rbm, binary_data, max_epochs=3, learning_rate=1., learning_rate_decay=0.5,
                              monitoring_interval=1)
        assert metrics["learning_rate"].tolist() == pytest.approx([0.5, 0.25, 0.125])

    def test_reconstruction_improves(self):
        """Two clear prototypes should be learned well enough to reconstruct better than an untrained model."""
        prototypes = torch.tensor([[1., 1., 1., 1., 0., 0., 0., 0.],
                                   [0., 0., 0., 0., 1., 1., 1., 1.]], dtype=torch.float64)
        features = prototypes.repeat(10, 1).T
        rbm = RBM(num_hidden=4, num_visible=8, seed=3)
        rbm.initialize_neural_network()
        before = rbm.reconstruction_error(features).item()
        quiet_train(rbm, features, max_epochs=200, learning_rate=0.1, mini_batch_size=5, momentum=0.5)
        assert rbm.reconstruction_error(features).item() < before

    def test_invalid_features(self, binary_rbm, binary_data):
        with pytest.raises(ValueError):
            quiet_train(binary_rbm, None)
        with pytest.raises(ValueError):
            quiet_train(binary_rbm, binary_data[:5])
        with pytest.raises(ValueError):
            quiet_train(binary_rbm, binary_data, mini_batch_size=11)

    def test_uninitialized_model(self):
        with pytest.raises(RuntimeError):
            RBMTrainer(RBM(num_hidden=2, num_visible=3), verbose=False)

    def test_checkpoints(self, binary_rbm, binary_data, tmp_path):
        directory = str(tmp_path)
        checkpointer = Checkpointer(binary_rbm, directory, "rbm", frequency=1)
        train(binary_rbm, binary_data, ContrastiveDivergenceConfig(max_epochs=2), verbose=False,
              checkpointer=checkpointer)
        assert sorted(os.listdir(directory)) == ["rbm_0000.pt", "rbm_0001.pt", "rbm_final.pt"]
        loaded = RBM.load(os.path.join(directory, "rbm_final.pt"))
        assert torch.equal(loaded.params, binary_rbm.params)

    def test_plot_examples_keeps_chain(self, binary_rbm, binary_data):
        trainer = RBMTrainer(binary_rbm, ContrastiveDivergenceConfig(mini_batch_size=5), image_shape=(2, 3),
                             plot_n_rows=2, plot_chain_length=3, verbose=False)
        trainer.prepare(binary_data)
        chain = binary_rbm.visible_state.clone()
        trainer.plot_examples(0)
        assert torch.equal(binary_rbm.visible_state, chain)

    def test_image_shape_mismatch(self, binary_rbm):
        with pytest.raises(ValueError):
            RBMTrainer(binary_rbm, image_shape=(3, 3), verbose=False)


class TestContrastiveDivergence:
    """Tests for the gradient estimate."""

    def test_zero_regularization_leaves_gradients(self, binary_rbm):
        trainer = RBMTrainer(binary_rbm, ContrastiveDivergenceConfig(l1_coefficient=0., l2_coefficient=0.),
                             verbose=False)
        gradients = torch.randn_like(binary_rbm.params.detach())
        before = gradients.clone()
        trainer.regularize(gradients)
        assert torch.equal(gradients, before)

    def test_regularization_only_touches_weights(self, binary_rbm):
        config = ContrastiveDivergenceConfig(l1_coefficient=0.1, l2_coefficient=0.5)
        trainer = RBMTrainer(binary_rbm, config, verbose=False)
        gradients = torch.zeros_like(binary_rbm.params.detach())
        trainer.regularize(gradients)
        weights = binary_rbm.weights_view().detach()
        expected = 0.5 * weights + 0.1 * torch.sign(weights)
        assert torch.allclose(binary_rbm.weights_view(gradients), expected)
        assert (binary_rbm.visible_bias_view(gradients) == 0).all()
        assert (binary_rbm.hidden_bias_view(gradients) == 0).all()

    def test_plain_cd_single_step_matches_manual(self, binary_rbm, binary_data):
        """CD-1 without persistence equals positive phase on the data minus phase on a one-step reconstruction."""
        config = ContrastiveDivergenceConfig(persistent=False, mini_batch_size=10)
        trainer = RBMTrainer(binary_rbm, config, verbose=False)
        trainer.prepare(binary_data)
        state = binary_rbm.generator.get_state()
        gradients = trainer.contrastive_divergence(binary_data).clone()

        binary_rbm.generator.set_state(state)
        hidden = binary_rbm.sample_hidden(binary_rbm.mean_hidden(binary_data))
        reconstruction = binary_rbm.mean_visible(hidden)
        expected = binary_rbm.free_energy_gradients(binary_data, positive_phase=True)
        binary_rbm.free_energy_gradients(reconstruction, expected, positive_phase=False)
        assert torch.allclose(gradients, expected)

    def test_persistent_chain_continues(self, binary_rbm, binary_data):
        """With persistence, the negative phase starts from where the previous update left the chain."""
        trainer = RBMTrainer(binary_rbm, ContrastiveDivergenceConfig(persistent=True, mini_batch_size=5),
                             verbose=False)
        trainer.prepare(binary_data)
        trainer.train_step(binary_data[:, :5])
        batch = binary_data[:, 5:]
        chain = binary_rbm.visible_state.clone()
        assert not torch.equal(chain, batch)
        state = binary_rbm.generator.get_state()
        gradients = trainer.contrastive_divergence(batch).clone()

        binary_rbm.generator.set_state(state)
        expected = binary_rbm.free_energy_gradients(batch, positive_phase=True)
        hidden = binary_rbm.sample_hidden(binary_rbm.mean_hidden(chain))
        binary_rbm.free_energy_gradients(binary_rbm.mean_visible(hidden), expected, positive_phase=False)
        assert torch.allclose(gradients, expected)

    def test_gradient_taken_at_lookahead_point(self, binary_rbm, binary_data):
        """Two updates give p2 - p1 = momentum * (p1 - p0) - lr * g2, with g2 evaluated at p1 + momentum * v1."""
        momentum, learning_rate = 0.9, 0.1
        config = ContrastiveDivergenceConfig(momentum=momentum, learning_rate=learning_rate)
        trainer = RBMTrainer(binary_rbm, config, verbose=False)
        trainer.prepare(binary_data)
        p0 = binary_rbm.params.detach().clone()
        trainer.train_step(binary_data)
        p1 = binary_rbm.params.detach().clone()

        chain = binary_rbm.visible_state.clone()
        state = binary_rbm.generator.get_state()
        trainer.train_step(binary_data)
        p2 = binary_rbm.params.detach().clone()
        g2 = binary_rbm.params.grad.clone()
        assert torch.allclose(p2 - p1, momentum * (p1 - p0) - learning_rate * g2)

        with torch.no_grad():
            binary_rbm.params.copy_(p1 + momentum * (p1 - p0))
        binary_rbm.visible_state.copy_(chain)
        binary_rbm.generator.set_state(state)
        assert torch.allclose(trainer.contrastive_divergence(binary_data), g2)
