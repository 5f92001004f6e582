"""
restbind - REST resources generated from document-store models.

Bind a Model handle (MongoDB via motor, or in-memory) to a set of
FastAPI routes for list, detail, insert, update and remove, with
filtering, RFC 5988 pagination links, projections, before-save hooks,
reference population and resource events.

Quick Start:
    >>> from fastapi import FastAPI
    >>> from restbind import ResourceBinder
    >>> from restbind.store import InMemoryModel
    >>>
    >>> app = FastAPI()
    >>> items = ResourceBinder(InMemoryModel("items", schema=Item))
    >>> items.events.on("insert", print)
    >>> items.serve("/items", app)
"""

__version__ = "0.1.0"

# Core exports for convenient imports
from restbind.errors import (
    BadRequestError,
    InvalidContentError,
    InvalidQueryError,
    ResourceNotFoundError,
    RestBindError,
)
from restbind.events import EVENTS, ResourceEvents
from restbind.options import (
    OperationOptions,
    PopulateDirective,
    ResourceOptions,
    ServeOptions,
)
from restbind.pipeline import Pipeline, PipelineBuilder, PipelineResult, RequestContext
from restbind.resource import ResourceBinder, create_resource

__all__ = [
    # Version
    "__version__",
    # Binder
    "ResourceBinder",
    "create_resource",
    # Options
    "ResourceOptions",
    "OperationOptions",
    "ServeOptions",
    "PopulateDirective",
    # Events
    "EVENTS",
    "ResourceEvents",
    # Pipeline
    "Pipeline",
    "PipelineBuilder",
    "PipelineResult",
    "RequestContext",
    # Errors
    "RestBindError",
    "BadRequestError",
    "InvalidQueryError",
    "InvalidContentError",
    "ResourceNotFoundError",
]
