from unittest.mock import patch

import pytest

from seneca.config.settings import Settings, StoreBackend, get_settings


def test_default_settings():
    """Test default settings values."""
    settings = Settings()

    assert settings.app_name == "Seneca Queue"
    assert settings.version == "1.0.0"
    assert settings.queue_store_backend == StoreBackend.AUTO
    assert settings.queue_max_attempts == 3
    assert settings.queue_stuck_threshold_minutes == 30
    assert settings.queue_retention_days == 30
    assert settings.worker_max_concurrent_jobs == 3
    assert settings.worker_processing_timeout_s == 300.0
    assert settings.worker_shutdown_timeout_s == 60.0


def test_production_validation_blocks_memory_store():
    """Workers in separate processes cannot share an in-memory store."""
    with pytest.raises(ValueError, match="QUEUE_STORE_BACKEND=memory is not allowed in production"):
        Settings(environment="production", queue_store_backend=StoreBackend.MEMORY)


def test_production_allows_database_stores():
    for backend in (StoreBackend.AUTO, StoreBackend.NATIVE, StoreBackend.MANUAL):
        settings = Settings(environment="production", queue_store_backend=backend)
        assert settings.queue_store_backend == backend


def test_development_allows_memory_store():
    settings = Settings(environment="development", queue_store_backend=StoreBackend.MEMORY)
    assert settings.queue_store_backend == StoreBackend.MEMORY


def test_settings_dependency_injection():
    """Test the get_settings dependency function."""
    settings = get_settings()
    assert isinstance(settings, Settings)
    assert settings.app_name == "Seneca Queue"


def test_worker_settings_are_validated():
    with pytest.raises(ValueError):
        Settings(worker_max_concurrent_jobs=0)
    with pytest.raises(ValueError):
        Settings(queue_max_attempts=0)


@patch.dict(
    "os.environ",
    {"QUEUE_STORE_BACKEND": "manual", "WORKER_PROCESSING_TIMEOUT_S": "12.5", "ENVIRONMENT": "production"},
)
def test_env_var_loading():
    """Test that environment variables are loaded correctly."""
    settings = Settings()
    assert settings.queue_store_backend == StoreBackend.MANUAL
    assert settings.worker_processing_timeout_s == 12.5
    assert settings.environment == "production"
