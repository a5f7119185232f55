"""
Authentication helpers for the gateway: API keys and client records.
"""

from .api_key_validator import ApiKeyValidator
from .client_lookup import ClientLookup

__all__ = [
    "ApiKeyValidator",
    "ClientLookup",
]
