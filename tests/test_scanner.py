"""
test_scanner.py
~~~~~~~~~~~~~~~

Tests for the DigitScanner facade and its drawing grid.
"""

import numpy as np
import pytest

from digitscanner.exceptions import InvalidTopologyError
from digitscanner.scanner import GRID_SIZE, DigitScanner


@pytest.fixture
def scanner():
    return DigitScanner([784, 10, 10], seed=0)


@pytest.mark.unit
class TestDrawingGrid:

    def test_grid_starts_empty(self, scanner):
        assert scanner.grid.shape == (GRID_SIZE, GRID_SIZE)
        assert not scanner.grid.any()

    def test_scan_keeps_highest_value(self, scanner):
        scanner.scan(3, 4, 120)
        scanner.scan(3, 4, 80)
        assert scanner.grid[3, 4] == 120
        scanner.scan(3, 4, 200)
        assert scanner.grid[3, 4] == 200

    def test_scan_clamps_values(self, scanner):
        scanner.scan(0, 0, 1000)
        scanner.scan(0, 1, -5)
        assert scanner.grid[0, 0] == 255
        assert scanner.grid[0, 1] == 0

    @pytest.mark.parametrize("i, j", [(-1, 0), (0, -1), (28, 0), (0, 28)])
    def test_scan_outside_grid_is_ignored(self, scanner, i, j):
        scanner.scan(i, j, 255)
        assert not scanner.grid.any()

    def test_reset(self, scanner):
        scanner.scan(10, 10, 255)
        scanner.reset()
        assert not scanner.grid.any()

    def test_guess_uses_scaled_grid(self, scanner):
        for k in range(GRID_SIZE):
            scanner.scan(k, k, 255)
            scanner.scan(k, GRID_SIZE - 1 - k, 128)
        expected = scanner.network.predict(scanner.grid.reshape(-1, 1) / 256.0)
        assert scanner.guess() == expected
        assert 0 <= scanner.guess() <= 9

    def test_guess_pixels_accepts_flat_list(self, scanner):
        pixels = [0.5] * 784
        expected = scanner.network.predict(np.full((784, 1), 0.5))
        assert scanner.guess_pixels(pixels) == expected


@pytest.mark.unit
class TestNetworkOwnership:

    def test_no_network_until_set(self):
        dgs = DigitScanner()
        assert dgs.network is None
        with pytest.raises(RuntimeError):
            dgs.guess()

    def test_set_layers_replaces_network(self, scanner):
        first = scanner.network
        scanner.set_layers([4, 3, 10])
        assert scanner.network is not first
        assert scanner.network.sizes == [4, 3, 10]

    def test_seed_makes_networks_identical(self):
        a = DigitScanner([4, 3, 10], seed=5)
        b = DigitScanner([4, 3, 10], seed=5)
        for wa, wb in zip(a.network.weights, b.network.weights):
            np.testing.assert_array_equal(wa, wb)

    def test_invalid_layers(self):
        with pytest.raises(InvalidTopologyError):
            DigitScanner([784])

    def test_save_and_load(self, tmp_path, scanner):
        path = str(tmp_path / "fnn.txt")
        scanner.save(path)

        other = DigitScanner(max_threads=2)
        other.load(path)
        assert other.network.sizes == [784, 10, 10]
        assert other.network.max_threads == 2
        for wa, wb in zip(scanner.network.weights, other.network.weights):
            np.testing.assert_array_equal(wa, wb)

    def test_save_without_network(self, tmp_path):
        with pytest.raises(RuntimeError):
            DigitScanner().save(str(tmp_path / "fnn.txt"))


@pytest.mark.integration
class TestTrainAndTest:

    def test_train_changes_network(self, mnist_dir):
        dgs = DigitScanner([4, 5, 10], seed=0)
        before = [w.copy() for w in dgs.network.weights]
        dgs.train(mnist_dir, 12, 0, 2, 3, 0.5, 1.0)
        assert any(not np.array_equal(w0, w)
                   for w0, w in zip(before, dgs.network.weights))

    def test_score_is_a_percentage(self, mnist_dir):
        dgs = DigitScanner([4, 5, 10], seed=0)
        score = dgs.test(mnist_dir, 5, 0)
        assert score in {0.0, 20.0, 40.0, 60.0, 80.0, 100.0}

    def test_score_matches_evaluate(self, mnist_dir):
        from digitscanner.mnist_loader import load_test_data

        dgs = DigitScanner([4, 5, 10], seed=3)
        data = load_test_data(mnist_dir, 4, 1)
        expected = 100 * dgs.network.evaluate(data) / 4
        assert dgs.test(mnist_dir, 4, 1) == expected
