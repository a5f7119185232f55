"""
Admin surface: clients, API keys and credit balances.
"""

from .api_keys import ApiKeyService
from .auth import AdminAuthenticator, generate_api_key, generate_client_id
from .clients import ClientService
from .credits import CreditService

__all__ = [
    "AdminAuthenticator",
    "ApiKeyService",
    "ClientService",
    "CreditService",
    "generate_api_key",
    "generate_client_id",
]
