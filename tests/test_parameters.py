"""Tests for the parameter vector layout."""
import pytest
import torch

from boltz.rbm import ParameterLayout


class TestParameterLayout:
    """Tests for offsets and views."""

    @pytest.fixture
    def layout(self):
        return ParameterLayout(num_visible=3, num_hidden=2)

    def test_num_params(self, layout):
        """Biases plus a full weight matrix."""
        assert layout.num_params == 3 + 2 + 3 * 2

    def test_partitions_cover_vector(self, layout):
        """Visible bias, hidden bias and weights are consecutive and cover every entry."""
        vector = torch.arange(layout.num_params, dtype=torch.float64)
        assert layout.visible_bias(vector).tolist() == [0., 1., 2.]
        assert layout.hidden_bias(vector).tolist() == [3., 4.]
        assert layout.weights(vector).tolist() == [[5., 6., 7.], [8., 9., 10.]]

    def test_views_alias_vector(self, layout):
        """Writing to a view changes the underlying vector."""
        vector = torch.zeros(layout.num_params)
        layout.weights(vector)[1, 2] = 5.
        layout.hidden_bias(vector).fill_(1.)
        assert vector[-1] == 5.
        assert vector[3:5].tolist() == [1., 1.]

    def test_wrong_length_raises(self, layout):
        """Buffers of the wrong length are rejected."""
        with pytest.raises(ValueError):
            layout.weights(torch.zeros(layout.num_params + 1))
        with pytest.raises(ValueError):
            layout.visible_bias(torch.zeros(2, layout.num_params))
