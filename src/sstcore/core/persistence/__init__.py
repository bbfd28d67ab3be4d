"""Storage protocols and adapters (in-memory and SQLAlchemy async)."""

from .base import AuditEvent, BlobStore, DocumentRepository
from .database import create_session_factory, init_database, session_scope, shutdown
from .memory import InMemoryBlobStore, InMemoryDocumentRepository
from .repository import SqlAlchemyDocumentRepository

__all__ = [
    "AuditEvent",
    "BlobStore",
    "DocumentRepository",
    "InMemoryBlobStore",
    "InMemoryDocumentRepository",
    "SqlAlchemyDocumentRepository",
    "init_database",
    "create_session_factory",
    "session_scope",
    "shutdown",
]
