from collections.abc import Iterable

import numpy as np
from matplotlib import pyplot as plt


def plot_learning_curves(metrics: dict[str, np.ndarray],
                         keys: Iterable[str]):
    """Basic plots for metrics of interest.

    Parameters:
        metrics: Dictionary as returned by a Trainer object's train_model function. Must contain a "step" entry.
        keys: Plots are made for each metric named in here, against the training step it was recorded at.
    """
    for key in keys:
        if key not in metrics:
            raise KeyError(f"Metric {key} was not recorded. Available are {sorted(metrics)}.")
        plt.figure(figsize=(12, 3))
        plt.plot(metrics["step"], metrics[key])
        plt.title(key)
        plt.xlabel("Step")
        plt.show()
