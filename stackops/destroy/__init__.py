"""Stack teardown."""

from .engine import TeardownEngine, get_services_stack_name

__all__ = ["TeardownEngine", "get_services_stack_name"]
