"""
restbind stores

Model handles a ResourceBinder can be bound to:
- MotorModel: MongoDB collection via motor
- InMemoryModel: process-local dict, for tests and development

Any object following the Model protocol in base.py works as well.
"""

from .base import (
    BaseEntity,
    BaseQuery,
    Entity,
    Model,
    PopulateDirective,
    Query,
    StoreModel,
    get_path,
    set_path,
)
from .memory import InMemoryEntity, InMemoryModel, InMemoryQuery
from .mongo import MotorEntity, MotorModel, MotorQuery

__all__ = [
    # Contract
    "Model",
    "Query",
    "Entity",
    "PopulateDirective",
    # Shared base
    "StoreModel",
    "BaseQuery",
    "BaseEntity",
    "get_path",
    "set_path",
    # MongoDB
    "MotorModel",
    "MotorQuery",
    "MotorEntity",
    # In-memory
    "InMemoryModel",
    "InMemoryQuery",
    "InMemoryEntity",
]
