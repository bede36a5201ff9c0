"""
test_mnist_loader.py
~~~~~~~~~~~~~~~~~~~~

Tests for the IDX reader, using synthetic files written by the fixtures.
"""

import gzip
import os
import struct

import numpy as np
import pytest

from conftest import write_idx_images, write_idx_labels
from digitscanner import mnist_loader
from digitscanner.exceptions import DatasetFormatError


@pytest.fixture
def images_file(tmp_path):
    images = np.arange(5 * 2 * 3).reshape(5, 2, 3)
    path = tmp_path / "images.idx3-ubyte"
    write_idx_images(path, images)
    return str(path), images


@pytest.fixture
def labels_file(tmp_path):
    path = tmp_path / "labels.idx1-ubyte"
    write_idx_labels(path, [7, 0, 9, 3, 3])
    return str(path)


@pytest.mark.unit
class TestIdxReader:

    def test_read_all_images(self, images_file):
        path, images = images_file
        loaded = mnist_loader.load_idx_images(path)
        assert loaded.shape == (5, 6)
        np.testing.assert_allclose(loaded, images.reshape(5, 6) / 256.0)

    def test_pixels_below_one(self, tmp_path):
        path = tmp_path / "white.idx3-ubyte"
        write_idx_images(path, np.full((1, 2, 2), 255))
        assert mnist_loader.load_idx_images(str(path)).max() < 1.0

    def test_read_with_skip_and_count(self, images_file):
        path, images = images_file
        loaded = mnist_loader.load_idx_images(path, nb_images=2, skip=1)
        np.testing.assert_allclose(loaded, images[1:3].reshape(2, 6) / 256.0)

    def test_read_labels(self, labels_file):
        labels = mnist_loader.load_idx_labels(labels_file)
        assert labels.tolist() == [7, 0, 9, 3, 3]
        assert mnist_loader.load_idx_labels(labels_file, 2, 3).tolist() == [3, 3]

    def test_gzip_files(self, tmp_path, images_file):
        path, images = images_file
        with open(path, 'rb') as src, gzip.open(path + '.gz', 'wb') as dst:
            dst.write(src.read())
        loaded = mnist_loader.load_idx_images(path + '.gz', nb_images=1, skip=4)
        np.testing.assert_allclose(loaded, images[4:].reshape(1, 6) / 256.0)

    def test_falls_back_to_gzip_sibling(self, tmp_path, images_file):
        path, images = images_file
        with open(path, 'rb') as src, gzip.open(path + '.gz', 'wb') as dst:
            dst.write(src.read())
        os.remove(path)
        assert mnist_loader.load_idx_images(path).shape == (5, 6)

    def test_bad_magic_number(self, labels_file):
        with pytest.raises(DatasetFormatError):
            mnist_loader.load_idx_images(labels_file)

    def test_truncated_data(self, tmp_path):
        path = tmp_path / "short.idx3-ubyte"
        with open(path, 'wb') as f:
            f.write(struct.pack('>IIII', 2051, 3, 2, 2))
            f.write(bytes(5))
        with pytest.raises(DatasetFormatError):
            mnist_loader.load_idx_images(str(path))

    def test_truncated_header(self, tmp_path):
        path = tmp_path / "header.idx1-ubyte"
        path.write_bytes(b'\x00\x00')
        with pytest.raises(DatasetFormatError):
            mnist_loader.load_idx_labels(str(path))

    def test_too_many_requested(self, images_file):
        path, _ = images_file
        with pytest.raises(DatasetFormatError):
            mnist_loader.load_idx_images(path, nb_images=4, skip=2)

    def test_label_out_of_range(self, tmp_path):
        path = tmp_path / "labels.idx1-ubyte"
        write_idx_labels(path, [1, 12])
        with pytest.raises(DatasetFormatError):
            mnist_loader.load_idx_labels(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            mnist_loader.load_idx_labels(str(tmp_path / "missing"))


@pytest.mark.unit
class TestVectorizedResult:

    def test_one_hot(self):
        e = mnist_loader.vectorized_result(3)
        assert e.shape == (10, 1)
        assert e.flat() == [0, 0, 0, 1, 0, 0, 0, 0, 0, 0]

    def test_out_of_range(self):
        with pytest.raises(DatasetFormatError):
            mnist_loader.vectorized_result(10)


@pytest.mark.integration
class TestDatasets:

    def test_training_data(self, mnist_dir):
        data = mnist_loader.load_training_data(mnist_dir, nb_images=4, skip=2)
        assert len(data) == 4
        x, y = data[0]
        assert x.shape == (4, 1)
        assert y.shape == (10, 1)
        assert y.argmax() == 2

    def test_test_data(self, mnist_dir):
        data = mnist_loader.load_test_data(mnist_dir)
        assert [label for _, label in data] == [3, 1, 4, 1, 5]
        assert all(isinstance(label, int) for _, label in data)

    def test_data_wrapper_split(self, mnist_dir, monkeypatch):
        monkeypatch.setattr(mnist_loader, 'TRAINING_SPLIT', 9)
        training, validation, test = mnist_loader.load_data_wrapper(mnist_dir)
        assert len(training) == 9
        assert len(validation) == 3
        assert len(test) == 5
        assert training[0][1].shape == (10, 1)
        assert [label for _, label in validation] == [9, 0, 1]
