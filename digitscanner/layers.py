"""
layers.py
~~~~~~~~~

The two kinds of layer a network is made of.

An ``InputLayer`` only knows how many nodes it has. A
``FullyConnectedLayer`` also holds a weight matrix, a bias matrix and a
reference to the layer before it, which may be of either kind. Both expose
``nb_nodes`` so a fully-connected layer can size its weights without caring
what precedes it.
"""

from typing import Union

import numpy as np

from digitscanner.matrix import Matrix


class Layer:
    """Common capability of every layer: a node count."""

    def __init__(self, nb_nodes: int):
        self.nb_nodes = nb_nodes

    def __repr__(self) -> str:
        return f"{type(self).__name__}(nb_nodes={self.nb_nodes})"


class InputLayer(Layer):
    """Raw feature vector; carries no parameters."""


class FullyConnectedLayer(Layer):
    """
    Layer connected to every node of its previous layer.

    Attributes:
        previous_layer: The layer feeding this one (not owned)
        weights: Matrix of shape (nb_nodes x previous_layer.nb_nodes)
        biases: Matrix of shape (nb_nodes x 1)
    """

    def __init__(self, nb_nodes: int, previous_layer: 'AnyLayer',
                 dtype=np.float64):
        super().__init__(nb_nodes)
        self.previous_layer = previous_layer
        self.weights = Matrix(nb_nodes, previous_layer.nb_nodes, dtype=dtype)
        self.biases = Matrix(nb_nodes, 1, dtype=dtype)

    def random_init_values(self, rng: np.random.Generator) -> None:
        """
        Draw fresh weights and biases from Gaussian distributions.

        Biases follow N(0, 1). Weights follow N(0, 1/sqrt(n)) where n is the
        node count of the previous layer, which keeps the weighted input of
        wide layers out of the flat regions of the sigmoid.

        Args:
            rng: Generator shared by every layer of the network
        """
        std = 1.0 / np.sqrt(self.previous_layer.nb_nodes)
        self.weights.assign(rng.normal(0.0, std, size=self.weights.shape))
        self.biases.assign(rng.standard_normal(size=self.biases.shape))


AnyLayer = Union[InputLayer, FullyConnectedLayer]
