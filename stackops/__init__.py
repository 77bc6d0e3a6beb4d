"""Stack lifecycle manager: update, rollback, restore and teardown of deployed stacks."""

from __future__ import annotations

__version__ = "0.1.0"
