"""Multi-tenant API collection manager backend."""

__version__ = "1.0.0"
