"""In this module you can find various helpers for visualization."""
from .image import plot_sample_grid
