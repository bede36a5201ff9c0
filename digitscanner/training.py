"""
training.py
~~~~~~~~~~~

Epoch and mini-batch driver for stochastic gradient descent.

The driver walks the training set in batches and hands each batch to
``Network.SGD_batch``. A final batch smaller than ``mini_batch_size`` is
dropped, so every epoch performs ``len(training_data) // mini_batch_size``
updates.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional, Sequence

import numpy as np

from digitscanner.exceptions import InvalidTrainingInputError
from digitscanner.network import Network

# Configure module logger
logger = logging.getLogger(__name__)

EpochCallback = Callable[[Dict[str, Any]], None]


def iter_mini_batches(training_data: Sequence, mini_batch_size: int):
    """Yield consecutive full batches; the remainder is dropped."""
    nb_batches = len(training_data) // mini_batch_size
    for k in range(nb_batches):
        start = k * mini_batch_size
        yield training_data[start:start + mini_batch_size]


def train(
    net: Network,
    training_data: Sequence,
    epochs: int,
    mini_batch_size: int,
    eta: float,
    alpha: float = 0.0,
    test_data: Optional[Sequence] = None,
    callback: Optional[EpochCallback] = None,
    yield_func: Optional[Callable[[], None]] = None,
    shuffle: bool = False,
    seed: Optional[int] = None
) -> None:
    """
    Train ``net`` in place with mini-batch stochastic gradient descent.

    Args:
        net: Network to train
        training_data: Sequence of (x, y) pairs with one-hot outputs
        epochs: Number of passes over the training set
        mini_batch_size: Number of examples per gradient step
        eta: Learning rate
        alpha: Weight-decay (L2 regularization) coefficient
        test_data: Optional (x, label) pairs evaluated after every epoch
        callback: Called after every epoch with a progress dictionary
        yield_func: Called after every batch so a cooperative scheduler can
            run other tasks
        shuffle: Shuffle the training set at the start of every epoch
        seed: Seed of the shuffling generator

    Raises:
        InvalidTrainingInputError: If the training set is empty, epochs or
            mini_batch_size is below 1, or an example has the wrong shape
    """
    training_data = list(training_data)
    n = len(training_data)
    if n == 0:
        raise InvalidTrainingInputError("Training data is empty")
    if epochs < 1:
        raise InvalidTrainingInputError(
            f"epochs must be at least 1, got {epochs}"
        )
    if mini_batch_size < 1:
        raise InvalidTrainingInputError(
            f"Batch size must be at least 1, got {mini_batch_size}"
        )
    # Fail on a malformed example before the first update.
    training_data = [(net.check_input(x), net.check_output(y))
                     for x, y in training_data]
    if mini_batch_size > n:
        logger.warning(
            f"Batch size {mini_batch_size} exceeds the {n} training "
            f"examples: no update will be performed"
        )
    if test_data is not None:
        test_data = list(test_data)

    rng = np.random.default_rng(seed) if shuffle else None
    begin = time.perf_counter()

    for epoch in range(1, epochs + 1):
        if rng is not None:
            order = rng.permutation(n)
            epoch_data = [training_data[i] for i in order]
        else:
            epoch_data = training_data

        for mini_batch in iter_mini_batches(epoch_data, mini_batch_size):
            net.SGD_batch(mini_batch, n, eta, alpha)
            if yield_func is not None:
                yield_func()

        elapsed = round(time.perf_counter() - begin, 2)
        progress: Dict[str, Any] = {
            'epoch': epoch,
            'total_epochs': epochs,
            'elapsed_time': elapsed,
            'accuracy': None,
            'correct': None,
            'total': None
        }
        if test_data:
            correct = net.evaluate(test_data)
            progress.update(
                correct=correct,
                total=len(test_data),
                accuracy=correct / len(test_data)
            )
            logger.info(
                f"Epoch {epoch}/{epochs}: {correct} / {len(test_data)} "
                f"({elapsed}s)"
            )
        else:
            logger.info(f"Epoch {epoch}/{epochs} complete ({elapsed}s)")

        if callback is not None:
            callback(progress)
