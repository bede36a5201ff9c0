"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for digit recognition.

This module provides endpoints for:
- Creating and managing neural networks
- Training networks with real-time progress updates via WebSockets
- Guessing digits drawn by a client on a 28x28 grid
- Testing networks on MNIST test images
- Persisting networks to/from SQLite database

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent for async background training tasks
- SQLite for network persistence
"""

import sys
import uuid
import base64
import logging
from io import BytesIO
from typing import Dict, Any, List, Optional

import gevent
import numpy as np
from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from digitscanner import mnist_loader
from digitscanner.config import Settings, configure_logging
from digitscanner.exceptions import DigitScannerError
from digitscanner.network import Network
from digitscanner.training import train
from digitscanner.model_persistence import (
    save_network,
    load_network,
    list_saved_networks,
    delete_network,
    delete_old_networks
)

logger = logging.getLogger(__name__)

settings = Settings.from_env()

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__)
CORS(app, resources={r"/*": {"origins": "*"}})  # Allow requests from any origin

# SocketIO enables real-time communication (WebSockets) for training updates
socketio = SocketIO(
    app,
    cors_allowed_origins="*",
    async_mode='gevent',
    logger=not settings.is_production,
    engineio_logger=not settings.is_production,
    ping_timeout=60,
    ping_interval=25
)

# ============================================================================
# SERVER STATE
# ============================================================================

# Networks currently loaded in memory: {network_id: network_info}
active_networks: Dict[str, Dict[str, Any]] = {}

# Training jobs being tracked: {job_id: job_info}
training_jobs: Dict[str, Dict[str, Any]] = {}

# MNIST dataset, loaded by init_app()
training_data: Any = None
validation_data: Any = None
test_data: Any = None


# ============================================================================
# DATA LOADING
# ============================================================================

def load_mnist_data() -> bool:
    """
    Load the MNIST dataset into module state.

    A missing dataset is not fatal: the server still creates networks and
    guesses digits, only training and examples are unavailable.

    Returns:
        bool: True if the data was loaded
    """
    global training_data, validation_data, test_data

    logger.info(f"Loading MNIST data from {settings.mnist_path}...")
    try:
        training_data, validation_data, test_data = (
            mnist_loader.load_data_wrapper(settings.mnist_path)
        )
    except (OSError, DigitScannerError) as e:
        logger.warning(f"MNIST data not available: {e}")
        return False

    logger.info(
        f"Data loaded: {len(training_data)} training, "
        f"{len(validation_data)} validation, {len(test_data)} test"
    )
    return True


def register_network(net: Network, network_id: Optional[str] = None,
                     trained: bool = False,
                     accuracy: Optional[float] = None) -> str:
    """Make a network available to the endpoints and return its id."""
    network_id = network_id or str(uuid.uuid4())
    active_networks[network_id] = {
        'network': net,
        'architecture': list(net.sizes),
        'trained': trained,
        'accuracy': accuracy
    }
    return network_id


def reload_saved_networks() -> None:
    """
    Reload all saved networks from the database into memory.

    Called at startup to restore networks that were saved before the
    application was restarted.
    """
    saved_networks = list_saved_networks(settings.model_dir)

    if not saved_networks:
        logger.info("No saved networks to reload")
        return

    loaded_count = 0
    for net_info in saved_networks:
        network_id = net_info['network_id']
        net = load_network(network_id, settings.model_dir,
                           max_threads=settings.max_threads)
        if net is None:
            logger.warning(f"Failed to load network {network_id}")
            continue
        register_network(net, network_id, net_info['trained'],
                         net_info['accuracy'])
        loaded_count += 1

    logger.info(f"Reloaded {loaded_count} network(s) from database")


def init_app() -> None:
    """Load the dataset and the saved networks, and forget stale jobs."""
    load_mnist_data()
    reload_saved_networks()

    # Training jobs can't continue after a restart, so start fresh
    training_jobs.clear()


# ============================================================================
# BACKGROUND TASKS
# ============================================================================

# Flag to ensure cleanup task only starts once
_cleanup_task_started = False


def cleanup_old_networks_task() -> None:
    """
    Background task that runs immediately, then every 24 hours to:
    - Delete networks older than CLEANUP_DAYS from the database
    - Sync in-memory networks with the database
    - Remove completed/failed training jobs from memory
    """
    while True:
        try:
            run_cleanup()
            logger.info("Next cleanup scheduled in 24 hours")
            gevent.sleep(86400)

        except Exception as e:
            logger.exception(f"Error during network cleanup: {e}")
            # Wait a bit before retrying on error (don't spam)
            gevent.sleep(3600)


def run_cleanup() -> int:
    """Run one cleanup pass and return the number of deleted networks."""
    logger.info("Starting automatic cleanup of old networks...")
    deleted_count = delete_old_networks(settings.cleanup_days,
                                        settings.model_dir)

    if deleted_count > 0:
        # Remove any networks from memory that no longer exist in database
        saved_ids = {
            net['network_id']
            for net in list_saved_networks(settings.model_dir)
        }
        for nid in [nid for nid, info in active_networks.items()
                    if info['trained'] and nid not in saved_ids]:
            del active_networks[nid]
            logger.info(f"Removed network {nid} from memory")
        logger.info(f"Cleanup completed: deleted {deleted_count} network(s)")
    elif deleted_count == 0:
        logger.info("Cleanup completed: no old networks found to delete")
    else:
        logger.error("Cleanup returned error code")

    cleanup_finished_training_jobs()
    return deleted_count


def cleanup_finished_training_jobs() -> None:
    """Remove completed or failed training jobs from memory."""
    finished_statuses = {'completed', 'failed'}
    jobs_to_remove = [
        job_id for job_id, job_info in training_jobs.items()
        if job_info.get('status') in finished_statuses
    ]

    for job_id in jobs_to_remove:
        del training_jobs[job_id]

    if jobs_to_remove:
        logger.info(f"Cleaned up {len(jobs_to_remove)} finished training job(s)")


def start_cleanup_task() -> None:
    """
    Start the background cleanup task.

    This function is idempotent - calling it multiple times has no effect.
    """
    global _cleanup_task_started

    if _cleanup_task_started:
        logger.debug("Cleanup task already started, skipping")
        return

    _cleanup_task_started = True
    logger.info("Starting cleanup task (runs immediately, then every 24 hours)")
    gevent.spawn(cleanup_old_networks_task)


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/status', methods=['GET'])
def get_status():
    """Return server status and statistics."""
    active_statuses = ('pending', 'training')
    active_training = sum(
        1 for job in training_jobs.values()
        if job.get('status') in active_statuses
    )

    return jsonify({
        'status': 'online',
        'active_networks': len(active_networks),
        'training_jobs': active_training,
        'data_loaded': training_data is not None
    }), 200


@app.route('/api/networks', methods=['POST'])
def create_network():
    """
    Create a new neural network.

    Request body (optional):
        {'layer_sizes': [784, 30, 10], 'seed': 42, 'max_threads': 2}

    Returns:
        JSON with network_id, architecture, and status
    """
    data = request.get_json(silent=True) or {}
    layer_sizes = data.get('layer_sizes', settings.default_layers)
    seed = data.get('seed')
    max_threads = data.get('max_threads', settings.max_threads)

    if seed is not None and not isinstance(seed, int):
        return jsonify({'error': 'seed must be an integer'}), 400

    try:
        net = Network(layer_sizes, max_threads=max_threads, seed=seed)
    except (DigitScannerError, TypeError) as e:
        logger.warning(f"Invalid architecture requested: {layer_sizes}")
        return jsonify({'error': f'Invalid architecture: {e}'}), 400

    network_id = register_network(net)
    logger.info(f"Created network {network_id} with architecture {net.sizes}")

    return jsonify({
        'network_id': network_id,
        'architecture': net.sizes,
        'status': 'created'
    }), 201


@app.route('/api/networks/<network_id>/train', methods=['POST'])
def train_network(network_id: str):
    """
    Start training a network in the background.

    Request body (all optional):
        {
            'epochs': 5,
            'mini_batch_size': 10,
            'learning_rate': 0.5,
            'weight_decay': 5.0
        }

    Returns:
        JSON with job_id, network_id, and status
    """
    if network_id not in active_networks:
        logger.warning(f"Training requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    if training_data is None:
        return jsonify({'error': 'Training data not available'}), 503

    data = request.get_json(silent=True) or {}
    epochs = data.get('epochs', 5)
    mini_batch_size = data.get('mini_batch_size', 10)
    learning_rate = data.get('learning_rate', 0.5)
    weight_decay = data.get('weight_decay', 5.0)

    # Validate training parameters
    if not isinstance(epochs, int) or epochs < 1:
        return jsonify({'error': 'epochs must be a positive integer'}), 400
    if not isinstance(mini_batch_size, int) or mini_batch_size < 1:
        return jsonify({'error': 'mini_batch_size must be a positive integer'}), 400
    if not isinstance(learning_rate, (int, float)) or learning_rate <= 0:
        return jsonify({'error': 'learning_rate must be a positive number'}), 400
    if not isinstance(weight_decay, (int, float)) or weight_decay < 0:
        return jsonify({'error': 'weight_decay must be a non-negative number'}), 400

    job_id = str(uuid.uuid4())

    training_jobs[job_id] = {
        'network_id': network_id,
        'status': 'pending',
        'progress': 0,
        'epochs': epochs
    }

    logger.info(
        f"Created training job {job_id} for network {network_id}: "
        f"epochs={epochs}, batch_size={mini_batch_size}, "
        f"lr={learning_rate}, alpha={weight_decay}"
    )

    # Run training in background so we can return immediately
    socketio.start_background_task(
        train_network_task,
        network_id, job_id, epochs, mini_batch_size, learning_rate,
        weight_decay
    )

    return jsonify({
        'job_id': job_id,
        'network_id': network_id,
        'status': 'training_started'
    }), 202


def train_network_task(
    network_id: str,
    job_id: str,
    epochs: int,
    mini_batch_size: int,
    learning_rate: float,
    weight_decay: float = 0.0
) -> None:
    """
    Background task that trains a neural network.

    Sends progress updates via WebSocket as training progresses.
    """
    net = active_networks[network_id]['network']

    def on_epoch_complete(data: Dict[str, Any]) -> None:
        """Called after each training epoch to send progress updates."""
        progress = (data['epoch'] / data['total_epochs']) * 100

        training_jobs[job_id]['status'] = 'training'
        training_jobs[job_id]['progress'] = progress

        socketio.emit('training_update', {
            'job_id': job_id,
            'network_id': network_id,
            'epoch': data['epoch'],
            'total_epochs': data['total_epochs'],
            'accuracy': data['accuracy'],
            'elapsed_time': data['elapsed_time'],
            'progress': progress,
            'correct': data.get('correct'),
            'total': data.get('total')
        })

        # Let gevent send the message immediately
        gevent.sleep(0)

    def yield_to_other_tasks() -> None:
        # Serve HTTP requests between batches
        gevent.sleep(0)

    try:
        logger.info(f"Starting training for job {job_id}")

        train(
            net,
            training_data,
            epochs,
            mini_batch_size,
            learning_rate,
            weight_decay,
            test_data=test_data,
            callback=on_epoch_complete,
            yield_func=yield_to_other_tasks
        )

        accuracy = net.evaluate(test_data) / len(test_data) if test_data else None

        active_networks[network_id]['trained'] = True
        active_networks[network_id]['accuracy'] = accuracy

        training_jobs[job_id]['status'] = 'completed'
        training_jobs[job_id]['accuracy'] = accuracy
        training_jobs[job_id]['progress'] = 100

        save_network(net, network_id, settings.model_dir,
                     trained=True, accuracy=accuracy)

        logger.info(f"Training completed for job {job_id}: accuracy {accuracy}")

        socketio.emit('training_complete', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'completed',
            'accuracy': accuracy,
            'progress': 100
        })
        gevent.sleep(0)

    except Exception as e:
        logger.exception(f"Training failed for job {job_id}: {e}")

        training_jobs[job_id]['status'] = 'failed'
        training_jobs[job_id]['error'] = str(e)

        socketio.emit('training_error', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'failed',
            'error': str(e)
        })
        gevent.sleep(0)


@app.route('/api/training/<job_id>', methods=['GET'])
def get_training_status(job_id: str):
    """Get the current status of a training job."""
    if job_id in training_jobs:
        return jsonify(training_jobs[job_id]), 200

    logger.warning(f"Status requested for non-existent job: {job_id}")
    return jsonify({'error': 'Training job not found'}), 404


@app.route('/api/networks', methods=['GET'])
def list_networks():
    """List all available networks (both in-memory and saved to disk)."""
    in_memory = [
        {
            'network_id': nid,
            'architecture': info['architecture'],
            'trained': info['trained'],
            'accuracy': info['accuracy'],
            'status': 'in_memory'
        }
        for nid, info in active_networks.items()
    ]

    # Get saved networks, excluding duplicates already in memory
    in_memory_ids = set(active_networks.keys())
    saved_only = []
    for net in list_saved_networks(settings.model_dir):
        if net['network_id'] not in in_memory_ids:
            net['status'] = 'saved'
            saved_only.append(net)

    logger.debug(f"Listing networks: {len(in_memory)} in memory, {len(saved_only)} saved")

    return jsonify({'networks': in_memory + saved_only}), 200


@app.route('/api/networks/<network_id>', methods=['DELETE'])
def delete_network_endpoint(network_id: str):
    """Delete a network from both memory and disk."""
    deleted_from_memory = False
    if network_id in active_networks:
        del active_networks[network_id]
        deleted_from_memory = True

    deleted_from_disk = delete_network(network_id, settings.model_dir)

    if not deleted_from_memory and not deleted_from_disk:
        logger.warning(f"Delete attempted for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    logger.info(f"Deleted network {network_id}: memory={deleted_from_memory}, disk={deleted_from_disk}")

    return jsonify({
        'network_id': network_id,
        'deleted_from_memory': deleted_from_memory,
        'deleted_from_disk': deleted_from_disk
    }), 200


@app.route('/api/networks', methods=['DELETE'])
def delete_all_networks():
    """Delete all networks from both memory and disk."""
    in_memory_ids = list(active_networks.keys())
    saved_ids = [net['network_id'] for net in list_saved_networks(settings.model_dir)]
    all_network_ids = list(set(in_memory_ids + saved_ids))

    deleted_from_memory_count = 0
    deleted_from_disk_count = 0

    for network_id in all_network_ids:
        if network_id in active_networks:
            del active_networks[network_id]
            deleted_from_memory_count += 1

        if delete_network(network_id, settings.model_dir):
            deleted_from_disk_count += 1

    logger.info(
        f"Deleted all networks: {len(all_network_ids)} total, "
        f"{deleted_from_memory_count} from memory, {deleted_from_disk_count} from disk"
    )

    return jsonify({
        'deleted_count': len(all_network_ids),
        'deleted_from_memory': deleted_from_memory_count,
        'deleted_from_disk': deleted_from_disk_count
    }), 200


@app.route('/api/networks/cleanup', methods=['POST'])
def cleanup_old_networks_endpoint():
    """
    Manually trigger cleanup of networks older than specified days.

    Request body (optional):
        {'days': 2}
    """
    data = request.get_json(silent=True) or {}
    days = data.get('days', settings.cleanup_days)

    if isinstance(days, bool) or not isinstance(days, (int, float)) or days < 0:
        return jsonify({'error': 'days must be a non-negative number'}), 400

    deleted_count = delete_old_networks(days, settings.model_dir)
    if deleted_count == -1:
        return jsonify({'error': 'Error occurred during cleanup'}), 500

    logger.info(f"Manual cleanup: deleted {deleted_count} network(s) older than {days} day(s)")

    return jsonify({
        'deleted_count': deleted_count,
        'days': days
    }), 200


@app.route('/api/networks/<network_id>/predict', methods=['POST'])
def predict_digit(network_id: str):
    """
    Guess the digit drawn by a client.

    Request body:
        {'pixels': [784 values in [0, 1], row by row]}

    Returns:
        JSON with the predicted digit and the raw network output
    """
    if network_id not in active_networks:
        return jsonify({'error': 'Network not found'}), 404

    net = active_networks[network_id]['network']
    data = request.get_json(silent=True) or {}
    pixels = data.get('pixels')

    if not isinstance(pixels, list) or len(pixels) != net.sizes[0] \
            or not all(isinstance(p, (int, float)) and not isinstance(p, bool)
                       for p in pixels):
        return jsonify({
            'error': f'pixels must be a list of {net.sizes[0]} numbers'
        }), 400

    x = np.array(pixels, dtype=np.float64).reshape(-1, 1)
    if not np.all(np.isfinite(x)) or x.min() < 0.0 or x.max() > 1.0:
        return jsonify({'error': 'pixels must be finite values in [0, 1]'}), 400

    output = net.feedforward(x)

    return jsonify({
        'network_id': network_id,
        'predicted_digit': output.argmax(),
        'network_output': output.flat()
    }), 200


@app.route('/api/networks/<network_id>/evaluate', methods=['POST'])
def evaluate_network(network_id: str):
    """
    Score a network on the MNIST test images.

    Request body (optional):
        {'nb_images': 10000, 'skip': 0}
    """
    if network_id not in active_networks:
        return jsonify({'error': 'Network not found'}), 404
    if not test_data:
        return jsonify({'error': 'Test data not available'}), 503

    data = request.get_json(silent=True) or {}
    skip = data.get('skip', 0)
    if not isinstance(skip, int) or skip < 0:
        return jsonify({'error': 'skip must be a non-negative integer'}), 400

    nb_images = data.get('nb_images', len(test_data) - skip)
    if not isinstance(nb_images, int) or nb_images < 1 \
            or skip + nb_images > len(test_data):
        return jsonify({'error': 'nb_images out of range'}), 400

    net = active_networks[network_id]['network']
    correct = net.evaluate(test_data[skip:skip + nb_images])

    return jsonify({
        'network_id': network_id,
        'correct': correct,
        'total': nb_images,
        'accuracy': correct / nb_images
    }), 200


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def array_to_float_list(array: np.ndarray) -> List[float]:
    """Convert a numpy array to a list of floats (for JSON serialization)."""
    return [float(val) for val in array.flatten()]


def create_digit_image(image_data: np.ndarray, predicted: int, actual: int) -> str:
    """
    Create a base64-encoded PNG image of a digit.

    Args:
        image_data: 784-element array representing the 28x28 digit image
        predicted: The digit the network predicted (0-9)
        actual: The correct digit (0-9)

    Returns:
        Base64-encoded PNG image string
    """
    side = int(round(np.sqrt(image_data.size)))
    shape = (side, side) if side * side == image_data.size \
        else (1, image_data.size)

    fig = plt.figure(figsize=(3, 3))
    try:
        plt.imshow(image_data.reshape(shape), cmap='gray')
        plt.title(f"Predicted: {predicted} | Actual: {actual}")
        plt.axis('off')

        # Save image to a bytes buffer instead of a file
        buffer = BytesIO()
        plt.savefig(buffer, format='png', bbox_inches='tight')
    finally:
        plt.close(fig)

    return base64.b64encode(buffer.getvalue()).decode('utf-8')


def _find_example(network_id: str, successful: bool, max_attempts: int):
    """Shared body of the successful/unsuccessful example endpoints."""
    kind = 'successful' if successful else 'unsuccessful'
    if network_id not in active_networks:
        logger.warning(f"{kind.capitalize()} example requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    if not test_data:
        logger.error("Test data not loaded")
        return jsonify({'error': 'Test data not available'}), 503

    net = active_networks[network_id]['network']
    for attempt in range(max_attempts):
        index = int(np.random.randint(0, len(test_data)))
        x, y = test_data[index]

        output = net.feedforward(x)
        predicted_digit = output.argmax()
        actual_digit = int(y)

        if (predicted_digit == actual_digit) == successful:
            logger.debug(f"Found {kind} example on attempt {attempt + 1}")

            return jsonify({
                'network_id': network_id,
                'example_index': index,
                'predicted_digit': predicted_digit,
                'actual_digit': actual_digit,
                'image_data': create_digit_image(x.array, predicted_digit, actual_digit),
                'output_weights': net.weights[-1].tolist(),
                'network_output': array_to_float_list(output.array)
            }), 200

    logger.warning(f"No {kind} example found after {max_attempts} attempts")
    return jsonify({
        'error': f'No {kind} example found after {max_attempts} attempts'
    }), 404


@app.route('/api/networks/<network_id>/successful_example', methods=['GET'])
def get_successful_example(network_id: str):
    """Return a random test image the network classifies correctly."""
    return _find_example(network_id, successful=True, max_attempts=100)


@app.route('/api/networks/<network_id>/unsuccessful_example', methods=['GET'])
def get_unsuccessful_example(network_id: str):
    """Return a random test image the network gets wrong."""
    return _find_example(network_id, successful=False, max_attempts=200)


# ============================================================================
# SERVER STARTUP
# ============================================================================

def serve(network: Optional[Network] = None) -> None:
    """
    Initialize the server state and run it until interrupted.

    Args:
        network: Optional network to register before serving
    """
    configure_logging(settings)
    init_app()
    if network is not None:
        network_id = register_network(network)
        logger.info(f"Serving network {network_id} ({network.sizes})")

    start_cleanup_task()
    logger.info(f"Starting server at http://localhost:{settings.port}/")

    try:
        socketio.run(
            app,
            host='0.0.0.0',
            port=settings.port,
            debug=not settings.is_production,
            use_reloader=False,
            allow_unsafe_werkzeug=True
        )
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {settings.port} is already in use.")
            sys.exit(1)
        raise


if __name__ == '__main__':
    serve()
