"""
mnist_loader.py
~~~~~~~~~~~~~~~

Reader for the MNIST handwritten digit dataset in its original IDX format.

The directory given to the loaders must hold the four files distributed on
the MNIST website::

    train-images.idx3-ubyte   train-labels.idx1-ubyte
    t10k-images.idx3-ubyte    t10k-labels.idx1-ubyte

Each file may also be gzip-compressed (``.gz`` suffix). Pixel values are
scaled to [0, 1) by dividing by 256.
"""

import gzip
import logging
import os
import struct
from typing import BinaryIO, List, Optional, Tuple

import numpy as np

from digitscanner.exceptions import DatasetFormatError
from digitscanner.matrix import Matrix

# Configure module logger
logger = logging.getLogger(__name__)

IMAGES_MAGIC = 2051
LABELS_MAGIC = 2049
NB_CLASSES = 10
PIXEL_SCALE = 256.0

TRAIN_IMAGES = 'train-images.idx3-ubyte'
TRAIN_LABELS = 'train-labels.idx1-ubyte'
TEST_IMAGES = 't10k-images.idx3-ubyte'
TEST_LABELS = 't10k-labels.idx1-ubyte'

# Training images kept for training by load_data_wrapper(); the rest
# become the validation set.
TRAINING_SPLIT = 50000


def _open(path: str) -> BinaryIO:
    if path.endswith('.gz'):
        return gzip.open(path, 'rb')
    if not os.path.exists(path) and os.path.exists(path + '.gz'):
        return gzip.open(path + '.gz', 'rb')
    return open(path, 'rb')


def _read_header(f: BinaryIO, path: str, magic: int, nb_dims: int):
    header = f.read(4 * (nb_dims + 1))
    if len(header) != 4 * (nb_dims + 1):
        raise DatasetFormatError(f"{path}: truncated IDX header")
    values = struct.unpack(f'>{nb_dims + 1}I', header)
    if values[0] != magic:
        raise DatasetFormatError(
            f"{path}: bad magic number {values[0]}, expected {magic}"
        )
    return values[1:]


def _select(count: int, nb_images: Optional[int], skip: int,
            path: str) -> int:
    if skip < 0:
        raise ValueError(f"skip must be non-negative, got {skip}")
    available = count - skip
    if nb_images is None:
        return max(available, 0)
    if nb_images < 0:
        raise ValueError(f"nb_images must be non-negative, got {nb_images}")
    if nb_images > available:
        raise DatasetFormatError(
            f"{path}: requested {nb_images} items after skipping {skip}, "
            f"but only {count} are stored"
        )
    return nb_images


def load_idx_images(
    path: str,
    nb_images: Optional[int] = None,
    skip: int = 0
) -> np.ndarray:
    """
    Read images from an IDX3 file.

    Args:
        path: Path of the ``*-images.idx3-ubyte`` file
        nb_images: Number of images to read (None reads to the end)
        skip: Number of images to skip first

    Returns:
        np.ndarray: Array of shape (nb_images, rows * cols), values in [0, 1)

    Raises:
        DatasetFormatError: If the file is not a valid IDX3 image file
    """
    with _open(path) as f:
        count, rows, cols = _read_header(f, path, IMAGES_MAGIC, 3)
        n = _select(count, nb_images, skip, path)
        image_len = rows * cols
        f.seek(16 + skip * image_len)
        raw = f.read(n * image_len)
    if len(raw) != n * image_len:
        raise DatasetFormatError(f"{path}: truncated image data")
    images = np.frombuffer(raw, dtype=np.uint8).reshape(n, image_len)
    return images.astype(np.float64) / PIXEL_SCALE


def load_idx_labels(
    path: str,
    nb_images: Optional[int] = None,
    skip: int = 0
) -> np.ndarray:
    """
    Read labels from an IDX1 file.

    Returns:
        np.ndarray: uint8 array of shape (nb_images,)

    Raises:
        DatasetFormatError: If the file is not a valid IDX1 label file
    """
    with _open(path) as f:
        (count,) = _read_header(f, path, LABELS_MAGIC, 1)
        n = _select(count, nb_images, skip, path)
        f.seek(8 + skip)
        raw = f.read(n)
    if len(raw) != n:
        raise DatasetFormatError(f"{path}: truncated label data")
    labels = np.frombuffer(raw, dtype=np.uint8).copy()
    if labels.size and labels.max() >= NB_CLASSES:
        raise DatasetFormatError(
            f"{path}: label {int(labels.max())} is not a digit"
        )
    return labels


def vectorized_result(label: int, size: int = NB_CLASSES) -> Matrix:
    """Return a one-hot (size x 1) column with a 1.0 at row ``label``."""
    if not 0 <= label < size:
        raise DatasetFormatError(f"Label {label} out of range [0, {size})")
    e = Matrix(size, 1)
    e[label, 0] = 1.0
    return e


def _load_pair(mnist_path: str, images_name: str, labels_name: str,
               nb_images: Optional[int], skip: int):
    images = load_idx_images(os.path.join(mnist_path, images_name),
                             nb_images, skip)
    labels = load_idx_labels(os.path.join(mnist_path, labels_name),
                             nb_images, skip)
    if len(images) != len(labels):
        raise DatasetFormatError(
            f"{mnist_path}: {len(images)} images but {len(labels)} labels"
        )
    return images, labels


def load_training_data(
    mnist_path: str,
    nb_images: Optional[int] = None,
    skip: int = 0
) -> List[Tuple[Matrix, Matrix]]:
    """
    Load training examples as (input, one-hot expected output) pairs.

    Example:
        >>> training_data = load_training_data('data/mnist', nb_images=1000)
        >>> x, y = training_data[0]
        >>> x.shape, y.shape
        ((784, 1), (10, 1))
    """
    images, labels = _load_pair(mnist_path, TRAIN_IMAGES, TRAIN_LABELS,
                                nb_images, skip)
    logger.info(f"Loaded {len(images)} training images from {mnist_path}")
    return [(Matrix.column(image), vectorized_result(int(label)))
            for image, label in zip(images, labels)]


def load_test_data(
    mnist_path: str,
    nb_images: Optional[int] = None,
    skip: int = 0
) -> List[Tuple[Matrix, int]]:
    """Load test examples as (input, digit label) pairs."""
    images, labels = _load_pair(mnist_path, TEST_IMAGES, TEST_LABELS,
                                nb_images, skip)
    logger.info(f"Loaded {len(images)} test images from {mnist_path}")
    return [(Matrix.column(image), int(label))
            for image, label in zip(images, labels)]


def load_data_wrapper(mnist_path: str):
    """
    Load the training, validation and test sets.

    The first 50000 training images form the training set (one-hot outputs),
    the remaining ones the validation set (digit labels). The test set comes
    from the t10k files (digit labels).

    Returns:
        tuple: (training_data, validation_data, test_data)
    """
    images, labels = _load_pair(mnist_path, TRAIN_IMAGES, TRAIN_LABELS,
                                None, 0)
    split = min(TRAINING_SPLIT, len(images))
    training_data = [(Matrix.column(image), vectorized_result(int(label)))
                     for image, label in zip(images[:split], labels[:split])]
    validation_data = [(Matrix.column(image), int(label))
                       for image, label in zip(images[split:], labels[split:])]
    test_data = load_test_data(mnist_path)
    logger.info(
        f"Split {len(images)} training images into {len(training_data)} "
        f"training and {len(validation_data)} validation examples"
    )
    return training_data, validation_data, test_data
