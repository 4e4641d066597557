"""Bling ERP Connector Package.

OAuth token lifecycle, the authenticated API client and wire models for
the Bling API v3.
"""

from connectors.bling.bling_auth import BlingOAuthConfig, NonceRegistry, TokenManager
from connectors.bling.bling_client import BlingApiClient
from connectors.bling.bling_models import (
    Address,
    Contact,
    ContactAddress,
    ContactSummary,
    NfseDocument,
    OrderCustomer,
    OrderItem,
    Product,
    SalesOrder,
)

__all__ = [
    # Auth
    "BlingOAuthConfig",
    "NonceRegistry",
    "TokenManager",
    # Client
    "BlingApiClient",
    # Models
    "Address",
    "Contact",
    "ContactAddress",
    "ContactSummary",
    "NfseDocument",
    "OrderCustomer",
    "OrderItem",
    "Product",
    "SalesOrder",
]
