from dataclasses import dataclass

from ..types import HiddenFloat, ParameterVectorFloat, VisibleFloat, WeightMatrixFloat


@dataclass(frozen=True)
class ParameterLayout:
    """Partitioning of the flat RBM parameter vector.

    The vector is laid out as [visible bias | hidden bias | weights], with the weights stored row-major as a
    (num_hidden x num_visible) matrix. This is the only place where the offsets are computed; anything that needs a
    piece of a parameter-shaped vector (parameters, gradients, velocities) should ask this class.

    Parameters:
        num_visible: Total number of visible units over all groups.
        num_hidden: Number of hidden units.
    """
    num_visible: int
    num_hidden: int

    @property
    def num_params(self) -> int:
        return self.num_visible + self.num_hidden + self.num_visible * self.num_hidden

    @property
    def hidden_bias_offset(self) -> int:
        return self.num_visible

    @property
    def weights_offset(self) -> int:
        return self.num_visible + self.num_hidden

    def check(self,
              vector: ParameterVectorFloat):
        """Make sure a vector can be partitioned with this layout."""
        if vector.dim() != 1 or vector.numel() != self.num_params:
            raise ValueError(f"Parameter-shaped vector must be 1d with {self.num_params} entries, got shape "
                             f"{tuple(vector.shape)}.")

    def visible_bias(self,
                     vector: ParameterVectorFloat) -> VisibleFloat:
        self.check(vector)
        return vector[:self.hidden_bias_offset]

    def hidden_bias(self,
                    vector: ParameterVectorFloat) -> HiddenFloat:
        self.check(vector)
        return vector[self.hidden_bias_offset:self.weights_offset]

    def weights(self,
                vector: ParameterVectorFloat) -> WeightMatrixFloat:
        """View of the weight block as a matrix. Writes to the view go straight to the vector."""
        self.check(vector)
        return vector[self.weights_offset:].view(self.num_hidden, self.num_visible)
