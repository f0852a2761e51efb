"""Change tracking for externally listed work items."""

__version__ = "0.1.0"
