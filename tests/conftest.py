"""
Pytest configuration and fixtures for restbind tests.
"""

import sys
from pathlib import Path
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel, Field

# Add the repository root to path for imports
# This allows `from restbind import ...` to work without installing
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from restbind import ResourceBinder  # noqa: E402
from restbind.app.errors import register_error_handlers  # noqa: E402
from restbind.store import InMemoryModel  # noqa: E402


class Item(BaseModel):
    """Document schema used across the route tests."""

    name: str
    price: float = Field(0, ge=0)
    tags: list[str] = Field(default_factory=list)
    owner: Any = None


class Owner(BaseModel):
    name: str
    email: str = ""


@pytest.fixture
def items_model():
    """Empty in-memory items collection."""
    return InMemoryModel("items", schema=Item)


@pytest.fixture
def owners_model():
    """Empty in-memory owners collection."""
    return InMemoryModel("owners", schema=Owner)


@pytest.fixture
def sample_items():
    """A few items with distinct prices and tags."""
    return [
        {"name": "apple", "price": 1.5, "tags": ["fruit"]},
        {"name": "bread", "price": 3.0, "tags": ["bakery"]},
        {"name": "cherry", "price": 6.0, "tags": ["fruit", "red"]},
    ]


@pytest.fixture
def app():
    """Bare FastAPI app with restbind's error handlers."""
    app = FastAPI()
    register_error_handlers(app)
    return app


@pytest.fixture
def make_client(app, items_model):
    """
    Factory serving an items binder on /items and returning a TestClient.

    Listeners and options must be configured on the binder before the
    factory is called, since serving freezes the event registry.
    """

    def factory(binder=None, serve_options=None, raise_server_exceptions=True):
        binder = binder or ResourceBinder(items_model)
        binder.serve("/items", app, serve_options)
        return TestClient(app, raise_server_exceptions=raise_server_exceptions)

    return factory
