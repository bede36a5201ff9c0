"""
conftest.py
~~~~~~~~~~~

Shared fixtures: small networks, synthetic datasets, a synthetic MNIST
directory written in the IDX format and a scratch model database.
"""

import os
import sqlite3
import struct

import numpy as np
import pytest

from digitscanner.matrix import Matrix
from digitscanner.network import Network
from digitscanner.training import train


def write_idx_images(path, images: np.ndarray) -> None:
    """Write uint8 images of shape (n, rows, cols) as an IDX3 file."""
    n, rows, cols = images.shape
    with open(path, 'wb') as f:
        f.write(struct.pack('>IIII', 2051, n, rows, cols))
        f.write(images.astype(np.uint8).tobytes())


def write_idx_labels(path, labels) -> None:
    """Write uint8 labels as an IDX1 file."""
    labels = np.asarray(labels, dtype=np.uint8)
    with open(path, 'wb') as f:
        f.write(struct.pack('>II', 2049, len(labels)))
        f.write(labels.tobytes())


@pytest.fixture
def simple_network():
    """Create a simple 3-layer network for testing."""
    return Network([3, 4, 2], seed=7)


@pytest.fixture
def trained_network(simple_network, random_training_data):
    """The simple network after one epoch of training."""
    train(simple_network, random_training_data, epochs=1, mini_batch_size=5,
          eta=0.1, alpha=1.0)
    return simple_network


@pytest.fixture
def xor_data():
    """Four (input, one-hot output) examples for a [2, n, 2] network."""
    inputs = [(0, 0), (0, 1), (1, 0), (1, 1)]
    data = []
    for a, b in inputs:
        x = Matrix.column([a, b])
        y = Matrix(2, 1)
        y[a ^ b, 0] = 1.0
        data.append((x, y))
    return data


@pytest.fixture
def random_training_data():
    """Ten random examples for a [3, n, 2] network."""
    rng = np.random.default_rng(3)
    data = []
    for i in range(10):
        x = Matrix.from_array(rng.standard_normal((3, 1)))
        y = Matrix(2, 1)
        y[i % 2, 0] = 1.0
        data.append((x, y))
    return data


@pytest.fixture
def mnist_dir(tmp_path):
    """
    A directory holding a tiny MNIST lookalike: 12 training and 5 test
    images of 2x2 pixels.
    """
    rng = np.random.default_rng(11)
    directory = tmp_path / "mnist"
    directory.mkdir()

    train_images = rng.integers(0, 256, size=(12, 2, 2))
    train_labels = [i % 10 for i in range(12)]
    test_images = rng.integers(0, 256, size=(5, 2, 2))
    test_labels = [3, 1, 4, 1, 5]

    write_idx_images(directory / "train-images.idx3-ubyte", train_images)
    write_idx_labels(directory / "train-labels.idx1-ubyte", train_labels)
    write_idx_images(directory / "t10k-images.idx3-ubyte", test_images)
    write_idx_labels(directory / "t10k-labels.idx1-ubyte", test_labels)
    return str(directory) + "/"


@pytest.fixture
def db_dir(tmp_path):
    """Directory holding the SQLite model database of one test."""
    directory = tmp_path / "models"
    directory.mkdir()
    return str(directory)


@pytest.fixture
def execute_sql(db_dir):
    """Run one statement on the model database, bypassing ModelDatabase."""
    def execute(statement, params=()):
        conn = sqlite3.connect(os.path.join(db_dir, "networks.db"))
        try:
            rows = conn.execute(statement, params).fetchall()
            conn.commit()
        finally:
            conn.close()
        return rows
    return execute


@pytest.fixture
def age_network(execute_sql):
    """Move the creation time of a saved network into the past."""
    def age(network_id, modifier):
        execute_sql(
            "UPDATE networks SET created_at = datetime('now', ?) "
            "WHERE network_id = ?",
            (modifier, network_id)
        )
    return age
