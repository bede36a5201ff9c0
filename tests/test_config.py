"""
test_config.py
~~~~~~~~~~~~~~

Tests for environment-driven settings.
"""

import pytest

from digitscanner.config import Settings


@pytest.mark.unit
class TestSettings:

    def test_defaults(self):
        settings = Settings.from_env({})
        assert settings == Settings()
        assert settings.default_layers == [784, 30, 10]
        assert settings.port == 8000
        assert settings.is_production is False

    def test_values_from_environment(self):
        settings = Settings.from_env({
            'LOG_LEVEL': 'debug',
            'FLASK_ENV': 'production',
            'PORT': '9000',
            'MNIST_PATH': '/data/mnist/',
            'MODEL_DIR': '/var/models',
            'DEFAULT_LAYERS': '784, 100, 10',
            'MAX_THREADS': '4',
            'CLEANUP_DAYS': '7'
        })
        assert settings.log_level == 'DEBUG'
        assert settings.is_production is True
        assert settings.port == 9000
        assert settings.mnist_path == '/data/mnist/'
        assert settings.model_dir == '/var/models'
        assert settings.default_layers == [784, 100, 10]
        assert settings.max_threads == 4
        assert settings.cleanup_days == 7

    def test_invalid_number(self):
        with pytest.raises(ValueError):
            Settings.from_env({'PORT': 'eighty'})
