"""
test_training.py
~~~~~~~~~~~~~~~~

Tests for the epoch/mini-batch training driver.
"""

import numpy as np
import pytest

from digitscanner.exceptions import (
    InvalidTrainingInputError,
    ShapeMismatchError
)
from digitscanner.matrix import Matrix
from digitscanner.network import Network
from digitscanner.training import iter_mini_batches, train


@pytest.mark.unit
class TestMiniBatches:

    def test_partial_batch_dropped(self):
        batches = list(iter_mini_batches(list(range(10)), 3))
        assert batches == [[0, 1, 2], [3, 4, 5], [6, 7, 8]]

    def test_batch_larger_than_data(self):
        assert list(iter_mini_batches([1, 2], 5)) == []


@pytest.mark.unit
class TestTrain:

    def test_training_does_not_increase_cost(self, xor_data):
        net = Network([2, 4, 2], seed=4)
        before = net.total_cost(xor_data)
        train(net, xor_data, epochs=30, mini_batch_size=4, eta=0.5)
        assert net.total_cost(xor_data) <= before

    def test_number_of_updates(self, xor_data, monkeypatch):
        net = Network([2, 3, 2], seed=0)
        calls = []
        monkeypatch.setattr(
            net, 'SGD_batch',
            lambda batch, n, eta, alpha: calls.append((len(batch), n, eta, alpha))
        )
        data = xor_data + xor_data[:3]
        train(net, data, epochs=3, mini_batch_size=2, eta=0.1, alpha=0.5)
        assert calls == [(2, 7, 0.1, 0.5)] * 9

    def test_same_result_as_manual_batches(self, xor_data):
        net = Network([2, 3, 2], seed=12)
        manual = Network([2, 3, 2], seed=12)
        train(net, xor_data, epochs=2, mini_batch_size=2, eta=0.4, alpha=1.0)
        for _ in range(2):
            for start in (0, 2):
                manual.SGD_batch(xor_data[start:start + 2], 4, 0.4, 1.0)
        for a, b in zip(net.weights + net.biases, manual.weights + manual.biases):
            np.testing.assert_allclose(a, b)

    def test_shuffle_is_reproducible(self, random_training_data):
        a = Network([3, 4, 2], seed=1)
        b = Network([3, 4, 2], seed=1)
        train(a, random_training_data, 2, 3, 0.5, shuffle=True, seed=9)
        train(b, random_training_data, 2, 3, 0.5, shuffle=True, seed=9)
        for wa, wb in zip(a.weights, b.weights):
            np.testing.assert_array_equal(wa, wb)

    def test_callback_and_yield(self, xor_data):
        net = Network([2, 3, 2], seed=0)
        test_data = [(x, y.argmax()) for x, y in xor_data]
        progress = []
        yields = []
        train(net, xor_data, epochs=2, mini_batch_size=1, eta=0.1,
              test_data=test_data, callback=progress.append,
              yield_func=lambda: yields.append(1))

        assert len(yields) == 8
        assert [p['epoch'] for p in progress] == [1, 2]
        assert all(p['total_epochs'] == 2 for p in progress)
        assert all(p['total'] == 4 for p in progress)
        assert all(0 <= p['correct'] <= 4 for p in progress)
        assert all(p['accuracy'] == p['correct'] / 4 for p in progress)
        assert all(p['elapsed_time'] >= 0 for p in progress)

    def test_callback_without_test_data(self, xor_data):
        net = Network([2, 3, 2], seed=0)
        progress = []
        train(net, xor_data, 1, 2, 0.1, callback=progress.append)
        assert progress[0]['accuracy'] is None
        assert progress[0]['correct'] is None

    @pytest.mark.parametrize("epochs, batch", [(0, 2), (1, 0), (2, -1)])
    def test_invalid_parameters(self, xor_data, epochs, batch):
        with pytest.raises(InvalidTrainingInputError):
            train(Network([2, 2], seed=0), xor_data, epochs, batch, 0.1)

    def test_empty_training_data(self):
        with pytest.raises(InvalidTrainingInputError):
            train(Network([2, 2], seed=0), [], 1, 1, 0.1)

    def test_bad_example_fails_before_any_update(self, xor_data):
        net = Network([2, 3, 2], seed=0)
        before = [w.copy() for w in net.weights]
        data = xor_data + [(Matrix(2, 1), Matrix(4, 1))]
        with pytest.raises(InvalidTrainingInputError):
            train(net, data, 1, 1, 0.5)
        for w0, w in zip(before, net.weights):
            np.testing.assert_array_equal(w0, w)

    def test_bad_input_shape(self, xor_data):
        net = Network([3, 2], seed=0)
        with pytest.raises(ShapeMismatchError):
            train(net, xor_data, 1, 1, 0.5)
