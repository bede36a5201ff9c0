"""
model_persistence.py
~~~~~~~~~~~~~~~~~~~~

Persistence for trained networks.

Networks are written in a plain text layout::

    <number of layers>
    <node count of layer 0> <node count of layer 1> ...
    <weights of fully-connected layer 0, one matrix row per line>
    <biases of fully-connected layer 0 on one line>
    ...

The same layout is used for standalone files (``--fnnin`` / ``--fnnout``)
and for the blobs stored in the SQLite model database, which adds metadata
(architecture, training status, accuracy, timestamps) with ACID transaction
guarantees.
"""

import sqlite3
import json
import os
import logging
from typing import Optional, List, Dict, Any, Generator
from contextlib import contextmanager

import numpy as np

from digitscanner.exceptions import (
    DigitScannerError,
    InvalidTopologyError,
    ModelFormatError
)
from digitscanner.network import Network

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_MODEL_DIR = 'models'


# ============================================================================
# TEXT LAYOUT
# ============================================================================

def _format_row(values: np.ndarray) -> str:
    return ' '.join(repr(float(v)) for v in values)


def dumps_network(network: Network) -> str:
    """
    Serialize a network's architecture and parameters to text.

    Args:
        network: Network to serialize

    Returns:
        str: The text layout described in the module docstring
    """
    lines = [str(len(network.sizes)), ' '.join(str(n) for n in network.sizes)]
    for layer in network.fully_connected_layers:
        for row in layer.weights.array:
            lines.append(_format_row(row))
        lines.append(_format_row(layer.biases.array[:, 0]))
    return '\n'.join(lines) + '\n'


def loads_network(text: str, **network_kwargs) -> Network:
    """
    Rebuild a network from its text layout.

    Args:
        text: Serialized network
        **network_kwargs: Extra arguments for the Network constructor
            (max_threads, dtype)

    Returns:
        Network: A network holding the stored weights and biases

    Raises:
        ModelFormatError: If the text does not follow the layout
    """
    tokens = text.split()
    try:
        nb_layers = int(tokens[0])
        sizes = [int(t) for t in tokens[1:1 + nb_layers]]
        values = np.array(tokens[1 + nb_layers:], dtype=np.float64)
    except (IndexError, ValueError) as e:
        raise ModelFormatError(f"Malformed network header: {e}") from e
    if nb_layers < 2 or len(sizes) != nb_layers:
        raise ModelFormatError(
            f"Expected {nb_layers} layer sizes, got {len(sizes)}"
        )

    expected = sum(sizes[i + 1] * (sizes[i] + 1) for i in range(nb_layers - 1))
    if values.size != expected:
        raise ModelFormatError(
            f"Expected {expected} parameters for architecture {sizes}, "
            f"got {values.size}"
        )

    try:
        network = Network(sizes, **network_kwargs)
    except InvalidTopologyError as e:
        raise ModelFormatError(str(e)) from e

    offset = 0
    for layer in network.fully_connected_layers:
        w_size = layer.weights.I * layer.weights.J
        layer.weights.assign(
            values[offset:offset + w_size].reshape(layer.weights.shape)
        )
        offset += w_size
        layer.biases.assign(
            values[offset:offset + layer.biases.I].reshape(layer.biases.shape)
        )
        offset += layer.biases.I
    return network


def save_network_file(network: Network, path: str) -> None:
    """Write a network to ``path`` in the text layout."""
    directory = os.path.dirname(path)
    if directory and not os.path.exists(directory):
        os.makedirs(directory)
    with open(path, 'w') as f:
        f.write(dumps_network(network))
    logger.info(f"Saved network {network.sizes} to {path}")


def load_network_file(path: str, **network_kwargs) -> Network:
    """
    Read a network written by :func:`save_network_file`.

    Raises:
        FileNotFoundError: If the file does not exist
        ModelFormatError: If the file does not follow the layout
    """
    with open(path) as f:
        network = loads_network(f.read(), **network_kwargs)
    logger.info(f"Loaded network {network.sizes} from {path}")
    return network


# ============================================================================
# SQLITE DATABASE
# ============================================================================

class ModelDatabase:
    """
    Manages SQLite database for neural network model persistence.

    The database stores:
    - Network metadata (architecture, training status, accuracy)
    - Network parameters in the text layout, as binary blobs
    """

    def __init__(self, db_path: str = 'models/networks.db'):
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self._ensure_directory()
        self._initialize_schema()

    def _ensure_directory(self) -> None:
        """Create the database directory if it doesn't exist."""
        db_dir = os.path.dirname(self.db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir)

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Yields:
            sqlite3.Connection: Database connection
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row  # Enable column access by name
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _initialize_schema(self) -> None:
        """Create the database schema if it doesn't exist."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS networks (
                    network_id TEXT PRIMARY KEY,
                    architecture TEXT NOT NULL,
                    network_data BLOB NOT NULL,
                    trained INTEGER NOT NULL DEFAULT 0,
                    accuracy REAL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_created_at
                ON networks(created_at DESC)
            ''')

    @staticmethod
    def _shapes(architecture: List[int]) -> Dict[str, List[List[int]]]:
        return {
            'weights_shape': [
                [architecture[i + 1], architecture[i]]
                for i in range(len(architecture) - 1)
            ],
            'biases_shape': [
                [architecture[i + 1], 1]
                for i in range(len(architecture) - 1)
            ]
        }

    @staticmethod
    def _row_to_metadata(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            'network_id': row['network_id'],
            'architecture': json.loads(row['architecture']),
            'trained': bool(row['trained']),
            'accuracy': row['accuracy'],
            'created_at': row['created_at'],
            'updated_at': row['updated_at']
        }

    def save_network_to_db(
        self,
        network: Network,
        network_id: str,
        trained: bool = True,
        accuracy: Optional[float] = None
    ) -> bool:
        """
        Save a network to the database.

        Saving under an existing id replaces the stored parameters and
        metadata but keeps the original creation time.

        Args:
            network: Network object to save
            network_id: Unique identifier for the network
            trained: Whether the network has been trained
            accuracy: Test accuracy (0.0 to 1.0)

        Returns:
            bool: True if successful

        Raises:
            ValueError: If accuracy is out of valid range
        """
        if accuracy is not None and not 0.0 <= accuracy <= 1.0:
            raise ValueError(
                f"Accuracy must be between 0.0 and 1.0, got {accuracy}"
            )

        network_data = dumps_network(network).encode('utf-8')
        architecture_json = json.dumps(network.sizes)

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                INSERT INTO networks
                (network_id, architecture, network_data, trained, accuracy)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(network_id) DO UPDATE SET
                    architecture = excluded.architecture,
                    network_data = excluded.network_data,
                    trained = excluded.trained,
                    accuracy = excluded.accuracy,
                    updated_at = CURRENT_TIMESTAMP
            ''', (
                network_id,
                architecture_json,
                network_data,
                1 if trained else 0,
                accuracy
            ))

        logger.info(
            f"Saved network '{network_id}' with architecture "
            f"{network.sizes}, trained={trained}, accuracy={accuracy}"
        )
        return True

    def load_network_from_db(self, network_id: str,
                             **network_kwargs) -> Optional[Network]:
        """
        Load a network from the database.

        Args:
            network_id: Unique identifier of the network
            **network_kwargs: Extra arguments for the Network constructor

        Returns:
            Network object or None if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'SELECT network_data FROM networks WHERE network_id = ?',
                (network_id,)
            )
            row = cursor.fetchone()

            if row is None:
                logger.warning(f"Network '{network_id}' not found")
                return None

            data = row['network_data']
            if isinstance(data, bytes):
                data = data.decode('utf-8')
            network = loads_network(data, **network_kwargs)
            logger.info(f"Loaded network '{network_id}'")
            return network

    def list_networks_from_db(self) -> List[Dict[str, Any]]:
        """
        List all networks with metadata.

        Returns:
            List of network metadata dictionaries, newest first
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT
                    network_id,
                    architecture,
                    trained,
                    accuracy,
                    created_at,
                    updated_at
                FROM networks
                ORDER BY created_at DESC
            ''')

            networks = []
            for row in cursor.fetchall():
                metadata = self._row_to_metadata(row)
                metadata.update(self._shapes(metadata['architecture']))
                networks.append(metadata)

            logger.debug(f"Listed {len(networks)} networks")
            return networks

    def delete_network_from_db(self, network_id: str) -> bool:
        """
        Delete a network from the database.

        Returns:
            bool: True if deleted, False if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'DELETE FROM networks WHERE network_id = ?',
                (network_id,)
            )

            deleted = cursor.rowcount > 0
            if deleted:
                logger.info(f"Deleted network '{network_id}'")
            else:
                logger.warning(
                    f"Could not delete network '{network_id}': not found"
                )
            return deleted

    def get_network_metadata_from_db(
        self,
        network_id: str
    ) -> Optional[Dict[str, Any]]:
        """
        Get network metadata without loading the parameters.

        Returns:
            Metadata dictionary or None if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT
                    network_id,
                    architecture,
                    trained,
                    accuracy,
                    created_at,
                    updated_at
                FROM networks
                WHERE network_id = ?
            ''', (network_id,))

            row = cursor.fetchone()
            if row is None:
                logger.warning(
                    f"Metadata for network '{network_id}' not found"
                )
                return None

            return self._row_to_metadata(row)

    def delete_old_networks_from_db(self, days: float) -> int:
        """
        Delete networks created more than ``days`` days ago.

        Args:
            days: Age threshold in days (0 deletes everything created
                before now)

        Returns:
            int: Number of deleted networks

        Raises:
            ValueError: If days is negative
        """
        if days < 0:
            raise ValueError(f"days must be non-negative, got {days}")

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                DELETE FROM networks
                WHERE julianday('now') - julianday(created_at) > ?
            ''', (days,))
            deleted = cursor.rowcount

        logger.info(f"Deleted {deleted} network(s) older than {days} day(s)")
        return deleted


def _get_db(model_dir: str) -> ModelDatabase:
    """Open the model database stored in ``model_dir``."""
    return ModelDatabase(db_path=os.path.join(model_dir, 'networks.db'))


def save_network(
    network: Network,
    network_id: str,
    model_dir: str = DEFAULT_MODEL_DIR,
    trained: bool = True,
    accuracy: Optional[float] = None
) -> bool:
    """
    Save a neural network to the SQLite database.

    Args:
        network: The neural network object to save
        network_id: A unique identifier for the network
        model_dir: Directory for the database file
        trained: Boolean indicating if the network has been trained
        accuracy: The accuracy of the trained network (0.0 to 1.0)

    Returns:
        bool: True if the save was successful, False otherwise

    Example:
        >>> net = Network([784, 30, 10])
        >>> save_network(net, "my_network", trained=False)
        True
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return False

    try:
        db = _get_db(model_dir)
        return db.save_network_to_db(network, network_id, trained, accuracy)

    except ValueError as e:
        logger.error(f"Validation error saving network '{network_id}': {e}")
        return False
    except AttributeError as e:
        logger.error(
            f"Serialization error saving network '{network_id}': {e}"
        )
        return False
    except sqlite3.Error as e:
        logger.error(f"Database error saving network '{network_id}': {e}")
        return False
    except Exception as e:
        logger.exception(
            f"Unexpected error saving network '{network_id}': {e}"
        )
        return False


def load_network(
    network_id: str,
    model_dir: str = DEFAULT_MODEL_DIR,
    **network_kwargs
) -> Optional[Network]:
    """
    Load a neural network from the SQLite database.

    Args:
        network_id: The unique identifier of the network to load
        model_dir: Directory where the database is stored
        **network_kwargs: Extra arguments for the Network constructor

    Returns:
        The loaded neural network object or None if not found

    Example:
        >>> net = load_network("my_network")
        >>> if net:
        ...     print(f"Loaded network with {len(net.sizes)} layers")
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return None

    try:
        db = _get_db(model_dir)
        return db.load_network_from_db(network_id, **network_kwargs)

    except DigitScannerError as e:
        logger.error(
            f"Deserialization error loading network '{network_id}': {e}"
        )
        return None
    except sqlite3.Error as e:
        logger.error(
            f"Database error loading network '{network_id}': {e}"
        )
        return None
    except Exception as e:
        logger.exception(
            f"Unexpected error loading network '{network_id}': {e}"
        )
        return None


def list_saved_networks(
    model_dir: str = DEFAULT_MODEL_DIR
) -> List[Dict[str, Any]]:
    """
    List all saved networks with their metadata.

    Returns:
        list: A list of metadata dictionaries for each saved network
    """
    try:
        return _get_db(model_dir).list_networks_from_db()

    except sqlite3.Error as e:
        logger.error(f"Database error listing networks: {e}")
        return []
    except json.JSONDecodeError as e:
        logger.error(f"JSON decode error listing networks: {e}")
        return []
    except Exception as e:
        logger.exception(f"Unexpected error listing networks: {e}")
        return []


def delete_network(network_id: str, model_dir: str = DEFAULT_MODEL_DIR) -> bool:
    """
    Delete a saved network from the database.

    Returns:
        bool: True if deletion was successful, False otherwise
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return False

    try:
        return _get_db(model_dir).delete_network_from_db(network_id)

    except sqlite3.Error as e:
        logger.error(f"Database error deleting network '{network_id}': {e}")
        return False
    except Exception as e:
        logger.exception(
            f"Unexpected error deleting network '{network_id}': {e}"
        )
        return False


def get_network_metadata(
    network_id: str,
    model_dir: str = DEFAULT_MODEL_DIR
) -> Optional[Dict[str, Any]]:
    """
    Get metadata for a specific network without loading its parameters.

    Example:
        >>> metadata = get_network_metadata("my_network")
        >>> if metadata:
        ...     print(f"Accuracy: {metadata['accuracy']}")
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return None

    try:
        return _get_db(model_dir).get_network_metadata_from_db(network_id)

    except sqlite3.Error as e:
        logger.error(
            f"Database error getting metadata for '{network_id}': {e}"
        )
        return None
    except json.JSONDecodeError as e:
        logger.error(
            f"JSON decode error getting metadata for '{network_id}': {e}"
        )
        return None


def delete_old_networks(
    days: float = 2,
    model_dir: str = DEFAULT_MODEL_DIR
) -> int:
    """
    Delete saved networks older than ``days`` days.

    Returns:
        int: Number of deleted networks, or -1 on a database error

    Raises:
        ValueError: If days is negative
    """
    if days < 0:
        raise ValueError(f"days must be non-negative, got {days}")

    try:
        return _get_db(model_dir).delete_old_networks_from_db(days)

    except sqlite3.Error as e:
        logger.error(f"Database error deleting old networks: {e}")
        return -1
