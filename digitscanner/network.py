"""
network.py
~~~~~~~~~~

Feedforward neural network trained with stochastic gradient descent.

The network is a chain of one input layer and several fully-connected layers
using the sigmoid activation. Learning uses the cross-entropy cost, whose
gradient with respect to the output layer's weighted input is simply the
output error ``a - y``: the sigmoid derivative cancels out, so saturated
output neurons still learn quickly.

Given the activations ``A(0) .. A(L)`` of one forward pass and the expected
output ``Y``, backpropagation computes::

    D(L-1)   = A(L) - Y
    NCW(k)   = D(k) * A(k)^t
    NCB(k)   = D(k)
    D(k)     = [ W(k+1)^t * D(k+1) ] o [ A(k+1) o (1 - A(k+1)) ]

where ``*`` is the matrix product, ``o`` the element-wise product and
``A o (1 - A)`` the sigmoid derivative evaluated from the stored activation.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence, Tuple

import numpy as np

from digitscanner.exceptions import (
    InvalidTopologyError,
    InvalidTrainingInputError,
    ShapeMismatchError
)
from digitscanner.layers import FullyConnectedLayer, InputLayer
from digitscanner.matrix import Matrix, as_matrix

# Configure module logger
logger = logging.getLogger(__name__)

NablaPair = Tuple[List[Matrix], List[Matrix]]


def cross_entropy_cost(a: Matrix, y: Matrix) -> float:
    """
    Cross-entropy cost of output ``a`` against expected output ``y``.

    ``np.nan_to_num`` turns the ``0 * log(0)`` terms of a saturated output
    that matches its target into 0.
    """
    a_data, y_data = a.array, y.array
    with np.errstate(divide='ignore', invalid='ignore'):
        terms = -y_data * np.log(a_data) - (1 - y_data) * np.log(1 - a_data)
    return float(np.sum(np.nan_to_num(terms)))


class Network:
    """
    Feedforward network of sigmoid neurons.

    Example:
        >>> net = Network([784, 30, 10], seed=42)
        >>> net.sizes
        [784, 30, 10]
    """

    def __init__(
        self,
        sizes: Sequence[int],
        max_threads: int = 1,
        seed: Optional[int] = None,
        dtype=np.float64
    ):
        """
        Build the layers and draw their initial weights and biases.

        Args:
            sizes: Node counts from the input layer to the output layer
            max_threads: Number of worker threads used to backpropagate the
                examples of one batch in parallel
            seed: Seed of the generator shared by every layer; None draws
                fresh entropy from the operating system
            dtype: numpy floating point type of every matrix

        Raises:
            InvalidTopologyError: If fewer than two sizes are given, a size
                is not a positive integer, or max_threads is below 1
        """
        try:
            sizes = list(sizes) if sizes is not None else []
        except TypeError as e:
            raise InvalidTopologyError(
                f"Layer sizes must be a sequence of integers, got {sizes!r}"
            ) from e
        if len(sizes) < 2:
            raise InvalidTopologyError(
                f"A network needs at least 2 layers, got {sizes}"
            )
        for size in sizes:
            if isinstance(size, bool) or not isinstance(size, (int, np.integer)) \
                    or size <= 0:
                raise InvalidTopologyError(
                    f"Layer sizes must be positive integers, got {sizes}"
                )
        if isinstance(max_threads, bool) or not isinstance(max_threads, int) \
                or max_threads < 1:
            raise InvalidTopologyError(
                f"max_threads must be a positive integer, got {max_threads}"
            )

        self.sizes = [int(size) for size in sizes]
        self.num_layers = len(self.sizes)
        self.max_threads = max_threads
        self.dtype = np.dtype(dtype)

        rng = np.random.default_rng(seed)
        self.input_layer = InputLayer(self.sizes[0])
        self.fully_connected_layers: List[FullyConnectedLayer] = []
        previous = self.input_layer
        for nb_nodes in self.sizes[1:]:
            layer = FullyConnectedLayer(nb_nodes, previous, dtype=self.dtype)
            layer.random_init_values(rng)
            self.fully_connected_layers.append(layer)
            previous = layer

        logger.debug(
            f"Created network {self.sizes} (max_threads={max_threads}, "
            f"seed={seed})"
        )

    def __repr__(self) -> str:
        return f"Network({self.sizes})"

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def nb_fully_connected_layers(self) -> int:
        return len(self.fully_connected_layers)

    def get_fully_connected_layer(self, i: int) -> FullyConnectedLayer:
        return self.fully_connected_layers[i]

    @property
    def weights(self) -> List[np.ndarray]:
        """Weight arrays of every fully-connected layer, in layer order."""
        return [layer.weights.array for layer in self.fully_connected_layers]

    @property
    def biases(self) -> List[np.ndarray]:
        """Bias arrays of every fully-connected layer, in layer order."""
        return [layer.biases.array for layer in self.fully_connected_layers]

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def check_input(self, x) -> Matrix:
        """Return x as a Matrix, checking it is an (n0 x 1) column."""
        x = as_matrix(x, dtype=self.dtype)
        if x.shape != (self.sizes[0], 1):
            raise ShapeMismatchError(
                f"Expected an input of shape ({self.sizes[0]}, 1), "
                f"got {x.shape}"
            )
        return x

    def check_output(self, y) -> Matrix:
        """Return y as a Matrix, checking it matches the output layer."""
        try:
            y = as_matrix(y, dtype=self.dtype)
        except ShapeMismatchError as e:
            raise InvalidTrainingInputError(str(e)) from e
        if y.shape != (self.sizes[-1], 1):
            raise InvalidTrainingInputError(
                f"Expected an output of shape ({self.sizes[-1]}, 1), "
                f"got {y.shape}"
            )
        return y

    def feedforward(self, x) -> Matrix:
        """
        Return the output of the network for input ``x``.

        Only the activation of the previous layer is kept alive while the
        next one is computed.

        Args:
            x: Column vector of shape (sizes[0] x 1)

        Returns:
            Matrix: Column vector of shape (sizes[-1] x 1), values in (0, 1)
        """
        a = self.check_input(x)
        for layer in self.fully_connected_layers:
            a = layer.weights @ a
            a += layer.biases
            a.sigmoid()
        return a

    def feedforward_complete(self, x) -> List[Matrix]:
        """
        Return every activation of a forward pass.

        Index 0 holds a copy of the input and index ``num_layers - 1`` the
        output. Backpropagation needs all of them.
        """
        activations = [self.check_input(x).copy()]
        for layer in self.fully_connected_layers:
            a = layer.weights @ activations[-1]
            a += layer.biases
            a.sigmoid()
            activations.append(a)
        return activations

    def predict(self, x) -> int:
        """Return the index of the most activated output neuron."""
        return self.feedforward(x).argmax()

    def evaluate(self, test_data) -> int:
        """
        Return the number of test inputs for which the network predicts the
        right class.

        Args:
            test_data: Iterable of (x, label) pairs; a label is either a
                class index or a one-hot column vector
        """
        correct = 0
        for x, y in test_data:
            if isinstance(y, (Matrix, np.ndarray)):
                expected = as_matrix(y).argmax()
            else:
                expected = int(y)
            if self.predict(x) == expected:
                correct += 1
        return correct

    def total_cost(self, data, alpha: float = 0.0) -> float:
        """
        Mean cross-entropy cost over ``data`` plus the L2 weight penalty.

        Args:
            data: Sequence of (x, y) pairs with one-hot outputs
            alpha: Weight-decay coefficient (0 disables the penalty)
        """
        data = list(data)
        if not data:
            raise InvalidTrainingInputError("Cannot compute the cost of no data")
        cost = 0.0
        for x, y in data:
            cost += cross_entropy_cost(self.feedforward(x),
                                       self.check_output(y))
        cost /= len(data)
        if alpha:
            squared = sum(float(np.sum(w ** 2)) for w in self.weights)
            cost += 0.5 * (alpha / len(data)) * squared
        return cost

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------

    def backpropagation_cross_entropy(self, x, y) -> NablaPair:
        """
        Compute the cost gradient for one training example.

        Args:
            x: Input column vector (sizes[0] x 1)
            y: Expected output column vector (sizes[-1] x 1)

        Returns:
            tuple: (nabla_w, nabla_b), one matrix per fully-connected layer
                with the shape of that layer's weights and biases

        Raises:
            InvalidTrainingInputError: If y has the wrong shape
            ShapeMismatchError: If x has the wrong shape
        """
        y = self.check_output(y)
        activations = self.feedforward_complete(x)
        nb_layers = self.nb_fully_connected_layers
        nabla_w: List[Matrix] = [None] * nb_layers
        nabla_b: List[Matrix] = [None] * nb_layers

        # The output activation is not needed afterwards: reuse it as D.
        delta = activations[nb_layers]
        delta -= y
        nabla_w[-1] = delta @ activations[nb_layers - 1].transpose()
        nabla_b[-1] = delta

        for k in range(nb_layers - 2, -1, -1):
            a = activations[k + 1]
            sp = Matrix.filled(a.I, 1, 1.0, dtype=self.dtype)
            sp -= a
            sp.element_wise_product(a)
            delta = self.fully_connected_layers[k + 1].weights.transpose() @ delta
            delta.element_wise_product(sp)
            nabla_w[k] = delta @ activations[k].transpose()
            nabla_b[k] = delta

        return nabla_w, nabla_b

    def _zero_nablas(self) -> NablaPair:
        nabla_w = [Matrix(layer.weights.I, layer.weights.J, dtype=self.dtype)
                   for layer in self.fully_connected_layers]
        nabla_b = [Matrix(layer.biases.I, 1, dtype=self.dtype)
                   for layer in self.fully_connected_layers]
        return nabla_w, nabla_b

    def _check_batch(self, mini_batch) -> List[Tuple[Matrix, Matrix]]:
        mini_batch = list(mini_batch)
        if len(mini_batch) < 1:
            raise InvalidTrainingInputError("Batch size must be at least 1")
        return [(self.check_input(x), self.check_output(y))
                for x, y in mini_batch]

    def compute_batch_gradients(self, mini_batch) -> NablaPair:
        """
        Sum the backpropagation gradients of every example in a batch.

        With ``max_threads > 1`` the examples are processed by a thread pool;
        every worker owns the activations and gradients of its example, and
        the sums are computed once all workers have been joined.

        Returns:
            tuple: (nabla_w, nabla_b) raw sums, not yet scaled
        """
        examples = self._check_batch(mini_batch)
        nabla_w, nabla_b = self._zero_nablas()

        if self.max_threads > 1 and len(examples) > 1:
            workers = min(self.max_threads, len(examples))
            with ThreadPoolExecutor(max_workers=workers) as pool:
                deltas = list(pool.map(
                    lambda example: self.backpropagation_cross_entropy(*example),
                    examples
                ))
        else:
            deltas = (self.backpropagation_cross_entropy(x, y)
                      for x, y in examples)

        for delta_nabla_w, delta_nabla_b in deltas:
            for nw, dnw in zip(nabla_w, delta_nabla_w):
                nw += dnw
            for nb, dnb in zip(nabla_b, delta_nabla_b):
                nb += dnb
        return nabla_w, nabla_b

    def SGD_batch(
        self,
        mini_batch,
        training_set_len: int,
        eta: float,
        alpha: float = 0.0
    ) -> None:
        """
        Apply one gradient descent step computed over ``mini_batch``.

        Weights are first shrunk by ``1 - alpha*eta/training_set_len`` (L2
        regularization) and then moved against the mean gradient scaled by
        the learning rate. Biases are not regularized.

        Args:
            mini_batch: Sequence of (x, y) training examples
            training_set_len: Size of the whole training set
            eta: Learning rate
            alpha: Weight-decay coefficient

        Raises:
            InvalidTrainingInputError: If the batch is empty, an example has
                the wrong output shape, or training_set_len is below 1
        """
        if training_set_len < 1:
            raise InvalidTrainingInputError(
                f"training_set_len must be at least 1, got {training_set_len}"
            )
        mini_batch = self._check_batch(mini_batch)
        nabla_w, nabla_b = self.compute_batch_gradients(mini_batch)

        scale = eta / len(mini_batch)
        decay = 1 - (alpha * eta) / training_set_len
        for layer, nw, nb in zip(self.fully_connected_layers, nabla_w, nabla_b):
            nw *= scale
            nb *= scale
            layer.weights *= decay
            layer.weights -= nw
            layer.biases -= nb
