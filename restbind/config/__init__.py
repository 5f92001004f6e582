"""
restbind Configuration

Environment-driven settings and the MongoDB service.
"""

from .schemas import AppSettings
from .service import DatabaseService

__all__ = [
    "AppSettings",
    "DatabaseService",
]
