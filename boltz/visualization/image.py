import numpy as np
import torch
from matplotlib import pyplot as plt
from torch.utils.tensorboard import SummaryWriter

from ..types import VisibleBatchFloat


def plot_sample_grid(samples: VisibleBatchFloat,
                     image_shape: tuple[int, ...],
                     figure_size: tuple[int, int],
                     title: str,
                     n_rows: int,
                     n_cols: int | None = None,
                     colormap: str = "Greys",
                     writer: SummaryWriter | None = None,
                     epoch_ind: int | None = None,
                     tensorboard_figures: bool = False,
                     suppress_plots: bool = False):
    """Make a grid of images from visible states.

    Parameters:
        samples: (visible units x n) batch. Each column is reshaped to image_shape and becomes one subplot. Values
                 are clipped to [0, 1].
        image_shape: Either (height, width) or (height, width, channels).
        figure_size: The size of the figure.
        title: Will be used as figure title as well as for naming Tensorboard summaries.
        n_rows: Will plot this many rows, and n_rows**2 many examples in total if n_cols is not given.
        n_cols: Will plot this many columns of examples. Defaults to n_rows.
        colormap: Which colormap to use to display images. Only used for single-channel images.
        Other arguments: Please see boltz.common.TrainerBase. Everything below writer is only used if that is not
                         None.
    """
    if n_cols is None:
        n_cols = n_rows
    with torch.inference_mode():
        images = np.clip(samples.T.cpu().numpy(), 0, 1).reshape(-1, *image_shape)

    plt.figure(figsize=figure_size)
    for ind, img in enumerate(images[:n_rows * n_cols]):
        plt.subplot(n_rows, n_cols, ind + 1)
        plt.imshow(img, vmin=0, vmax=1, cmap=colormap)
        plt.axis("off")
    plt.suptitle(title)

    if writer is not None and tensorboard_figures and epoch_ind is not None:
        writer.add_figure(title, plt.gcf(), epoch_ind, close=suppress_plots)
    plt.show()
