"""Shared pytest fixtures for all tests."""

import pytest
from fastapi.testclient import TestClient

from upload_server.config import ServerSettings
from upload_server.main import create_app
from uploader.config import Config


@pytest.fixture
def server_settings(tmp_path):
    """
    Server settings pointing at temporary directories.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        ServerSettings with the background cleaner disabled
    """
    root = tmp_path / 'server'
    return ServerSettings(
        upload_dir=root / 'uploads',
        temp_chunks_dir=root / 'temp_chunks',
        completed_dir=root / 'upload_completed',
        cleanup_interval_seconds=0,
    )


@pytest.fixture
def server_app(server_settings):
    """FastAPI application bound to the temporary settings."""
    return create_app(server_settings)


@pytest.fixture
def client(server_app):
    """Create FastAPI test client (runs the application lifespan)."""
    with TestClient(server_app) as test_client:
        yield test_client


@pytest.fixture
def temp_config_dir(tmp_path):
    """
    Create temporary config directory.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Path to temporary .chunkferry directory
    """
    config_dir = tmp_path / '.chunkferry'
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def temp_config(temp_config_dir):
    """
    Create temporary config instance.

    Args:
        temp_config_dir: Temporary config directory fixture

    Returns:
        Config instance with temp config file
    """
    config = Config(temp_config_dir / 'config.json')
    config.data['retry_delay_seconds'] = 0
    return config


@pytest.fixture
def sample_file(tmp_path):
    """
    Create a sample file for testing uploads.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Path to sample text file
    """
    file_path = tmp_path / 'test.txt'
    file_path.write_text('Sample content for testing')
    return file_path


@pytest.fixture
def multiple_sample_files(tmp_path):
    """
    Create multiple sample files for testing bulk operations.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        List of Paths to sample files
    """
    files = []
    for i in range(3):
        file_path = tmp_path / f'test{i}.txt'
        file_path.write_bytes(bytes([65 + i]) * (10 + i * 7))
        files.append(file_path)
    return files
