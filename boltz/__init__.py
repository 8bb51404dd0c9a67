"""This module contains functionalities for building, training and sampling from Restricted Boltzmann Machines.

The visible layer can mix binary, softmax (one-hot categorical) and Gaussian units, so one model can describe e.g.
images together with their class labels. Training uses contrastive divergence, and sampling can be conditioned on
observed values for one group of visible units (e.g. generate images for a given label, or predict the label for given
images).

All data is column-major: a feature matrix has one row per visible unit and one column per sample.
"""
