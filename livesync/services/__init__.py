"""Outbound HTTP services."""
from .token_client import TokenClient

__all__ = ["TokenClient"]
