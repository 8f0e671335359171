"""HTTP surface of the Veil ledger service."""

from .main import create_app

__all__ = ["create_app"]
