"""Contact Resolver - canonical Bling contact for an order's customer.

Usage:
    from contact_resolver import ContactResolver

    resolver = ContactResolver(bling_client)
    contact = await resolver.resolve(order)
"""

from contact_resolver.normalize import (
    digits_only,
    document_digits,
    documents_match,
    is_consumer_default,
    is_well_formed,
    person_type,
)
from contact_resolver.resolver import ContactDefaults, ContactResolver

__all__ = [
    "ContactResolver",
    "ContactDefaults",
    "digits_only",
    "document_digits",
    "documents_match",
    "is_consumer_default",
    "is_well_formed",
    "person_type",
]
