"""Version update and rollback."""

from .catalog import LambdaReleaseCatalog, ReleaseCatalog
from .engine import UpdateEngine

__all__ = ["LambdaReleaseCatalog", "ReleaseCatalog", "UpdateEngine"]
