"""
scanner.py
~~~~~~~~~~

DigitScanner: create, train and test networks for handwritten digit
recognition, and guess the digit drawn on a 28x28 grid.

Each DigitScanner owns exactly one network. Callers that need several
networks (the API server) keep several scanners or networks side by side.
"""

import logging
from typing import Optional, Sequence

import numpy as np

from digitscanner import mnist_loader
from digitscanner.model_persistence import load_network_file, save_network_file
from digitscanner.network import Network
from digitscanner.training import train

# Configure module logger
logger = logging.getLogger(__name__)

GRID_SIZE = 28
MAX_INTENSITY = 255


class DigitScanner:
    """
    Owner of one network plus a drawing grid.

    Example:
        >>> dgs = DigitScanner([784, 30, 10], seed=1)
        >>> dgs.train('data/mnist/', 60000, 0, 30, 10, 0.5, 5.0)
        >>> dgs.test('data/mnist/', 10000, 0)
        95.1
    """

    def __init__(
        self,
        layers: Optional[Sequence[int]] = None,
        max_threads: int = 1,
        seed: Optional[int] = None
    ):
        self.max_threads = max_threads
        self.seed = seed
        self.network: Optional[Network] = None
        self.grid = np.zeros((GRID_SIZE, GRID_SIZE), dtype=np.float64)
        if layers is not None:
            self.set_layers(layers)

    def _require_network(self) -> Network:
        if self.network is None:
            raise RuntimeError(
                "No network: call set_layers() or load() first"
            )
        return self.network

    def set_layers(self, layers: Sequence[int]) -> None:
        """Replace the network with a freshly initialized one."""
        self.network = Network(layers, max_threads=self.max_threads,
                               seed=self.seed)

    def load(self, path: str) -> None:
        """Replace the network with one read from a text file."""
        self.network = load_network_file(path, max_threads=self.max_threads)

    def save(self, path: str) -> None:
        save_network_file(self._require_network(), path)

    def train(
        self,
        mnist_path: str,
        nb_images: int,
        nb_images_to_skip: int,
        nb_epoch: int,
        batch_len: int,
        eta: float,
        alpha: float
    ) -> None:
        """
        Train the network on MNIST training images.

        Args:
            mnist_path: Directory holding the MNIST files
            nb_images: Number of training images to use
            nb_images_to_skip: Offset of the first image in the file
            nb_epoch: Number of epochs
            batch_len: Mini-batch size
            eta: Learning rate
            alpha: Weight-decay coefficient
        """
        net = self._require_network()
        training_data = mnist_loader.load_training_data(
            mnist_path, nb_images, nb_images_to_skip
        )
        train(net, training_data, nb_epoch, batch_len, eta, alpha)

    def test(
        self,
        mnist_path: str,
        nb_images: int,
        nb_images_to_skip: int = 0
    ) -> float:
        """
        Test the network on MNIST test images.

        Returns:
            float: Percentage of correctly classified images
        """
        net = self._require_network()
        test_data = mnist_loader.load_test_data(
            mnist_path, nb_images, nb_images_to_skip
        )
        if not test_data:
            return 0.0
        score = 100 * net.evaluate(test_data) / len(test_data)
        logger.info(f"Test score: {score:.2f} % on {len(test_data)} images")
        return score

    # ------------------------------------------------------------------
    # Drawing grid
    # ------------------------------------------------------------------

    def scan(self, i: int, j: int, value: float) -> None:
        """
        Darken cell (i, j) of the drawing grid.

        A cell keeps the highest intensity it has received, clamped to
        [0, 255]. Cells outside the grid are ignored.
        """
        if not (0 <= i < GRID_SIZE and 0 <= j < GRID_SIZE):
            return
        value = min(max(float(value), 0.0), MAX_INTENSITY)
        self.grid[i, j] = max(self.grid[i, j], value)

    def reset(self) -> None:
        """Clear the drawing grid."""
        self.grid.fill(0.0)

    def guess(self) -> int:
        """Return the digit the network sees on the drawing grid."""
        pixels = self.grid.reshape(-1, 1) / mnist_loader.PIXEL_SCALE
        return self.guess_pixels(pixels)

    def guess_pixels(self, pixels) -> int:
        """
        Return the digit predicted for 784 pixel values in [0, 1].

        Args:
            pixels: Flat sequence or column vector of GRID_SIZE**2 values
        """
        net = self._require_network()
        x = np.asarray(pixels, dtype=np.float64).reshape(-1, 1)
        digit = net.predict(x)
        logger.debug(f"Guessed digit {digit}")
        return digit
