"""
config.py
~~~~~~~~~

Environment-driven settings and logging setup shared by the command line
and the API server.

Recognised variables:
    LOG_LEVEL       logging level name (default INFO)
    FLASK_ENV       'production' silences noisy third-party loggers
    PORT            API server port (default 8000)
    MNIST_PATH      directory holding the MNIST IDX files
    MODEL_DIR       directory of the SQLite model database
    DEFAULT_LAYERS  comma separated layer sizes of new networks
    MAX_THREADS     worker threads used per training batch
    CLEANUP_DAYS    age after which saved networks are deleted
"""

import os
import logging
from dataclasses import dataclass, field
from typing import List, Mapping, Optional


def _parse_layers(value: str) -> List[int]:
    return [int(part) for part in value.split(',') if part.strip()]


@dataclass
class Settings:
    """Runtime settings, defaulting to the values used in development."""

    log_level: str = 'INFO'
    is_production: bool = False
    port: int = 8000
    mnist_path: str = 'data/mnist/'
    model_dir: str = 'models'
    default_layers: List[int] = field(default_factory=lambda: [784, 30, 10])
    max_threads: int = 1
    cleanup_days: int = 2

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'Settings':
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``

        Raises:
            ValueError: If a numeric variable cannot be parsed
        """
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            log_level=env.get('LOG_LEVEL', defaults.log_level).upper(),
            is_production=env.get('FLASK_ENV') == 'production',
            port=int(env.get('PORT', defaults.port)),
            mnist_path=env.get('MNIST_PATH', defaults.mnist_path),
            model_dir=env.get('MODEL_DIR', defaults.model_dir),
            default_layers=_parse_layers(env['DEFAULT_LAYERS'])
            if env.get('DEFAULT_LAYERS') else defaults.default_layers,
            max_threads=int(env.get('MAX_THREADS', defaults.max_threads)),
            cleanup_days=int(env.get('CLEANUP_DAYS', defaults.cleanup_days))
        )


def configure_logging(settings: Optional[Settings] = None) -> None:
    """
    Set up logging based on environment.

    - In production: Show fewer logs (less noise) but keep important logs
    - In development: Show more detailed logs for debugging
    """
    settings = settings or Settings.from_env()
    log_level = getattr(logging, settings.log_level, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # In production, silence noisy third-party logs but keep our logs visible
    if settings.is_production:
        for logger_name in ['socketio', 'engineio', 'engineio.server',
                            'socketio.server', 'werkzeug']:
            logging.getLogger(logger_name).setLevel(logging.WARNING)
        logging.getLogger('digitscanner').setLevel(logging.INFO)
    else:
        logging.getLogger('socketio').setLevel(logging.INFO)
        logging.getLogger('engineio').setLevel(logging.INFO)
