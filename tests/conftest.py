"""
Test configuration and fixtures for the file intake gate.

This module provides common fixtures and configuration for all tests.
"""

import os
import sys
from typing import Generator

import pytest
from fastapi.testclient import TestClient

# Add the parent directory to the path so we can import main
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from main import app
from models.validation import FileData
from validation.validators import FileValidator, create_file_validator
from tests.utils.fixtures import build_jpeg, build_png, make_file


@pytest.fixture
def test_client() -> Generator[TestClient, None, None]:
    """
    FastAPI test client fixture for synchronous testing.

    Yields:
        TestClient: Configured FastAPI test client
    """
    with TestClient(app) as client:
        yield client


@pytest.fixture
def file_validator() -> FileValidator:
    """Validator built from the default policy."""
    return create_file_validator()


@pytest.fixture
def clean_text_file() -> FileData:
    return make_file(b"Quarterly report: revenue grew by 4% over the previous period.\n", "report.txt", "text/plain")


@pytest.fixture
def jpeg_file() -> FileData:
    """Valid 108-byte JPEG declared as image/jpeg."""
    return make_file(build_jpeg(108), "photo.jpg", "image/jpeg")


@pytest.fixture
def png_file() -> FileData:
    return make_file(build_png(), "pixel.png", "image/png")
