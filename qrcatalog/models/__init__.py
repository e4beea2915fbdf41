from .base import Base
from .documents import StoredDocument
from .versions import StoredVersion

__all__ = [
    "Base",
    "StoredDocument",
    "StoredVersion",
]
