"""Database access for the tiler."""

from .config import DatabaseConfig, TilerConfig
from .postgres import PostgresClient, PostgresSession

__all__ = [
    "DatabaseConfig",
    "TilerConfig",
    "PostgresClient",
    "PostgresSession",
]
