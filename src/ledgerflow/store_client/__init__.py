"""
REST data store client.

Provides:
- Rule reads and authoring (list, by phone, create, bulk create, soft delete)
- Account resolution with progressive fallback, balance read/patch
- Category lookup by slug
- Transaction insert and duplicate lookups
- Skipped-message log

Store failures are loud: network errors and non-2xx responses raise.
"""

from .client import (
    StoreAPIError,
    StoreClient,
    StoreConnectionError,
    StoreError,
)

__all__ = [
    "StoreClient",
    "StoreError",
    "StoreAPIError",
    "StoreConnectionError",
]
