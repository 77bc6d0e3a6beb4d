"""Disaster-recovery restore from point-in-time backups."""

from .engine import RestoreEngine, rewrite_parameters
from .naming import derive_restored_resource_name

__all__ = ["RestoreEngine", "derive_restored_resource_name", "rewrite_parameters"]
