"""
Transfer detection and expansion.

A transfer message becomes one entry (destination unknown or unregistered)
or two linked entries sharing a transfer_id (destination registered).
"""

from .detector import (
    TransferDetection,
    TransferDetector,
    extract_origin_account,
    extract_phone_number,
    is_transfer_message,
)
from .expander import TransferExpander, TransferInfo, TransferResult

__all__ = [
    "TransferDetection",
    "TransferDetector",
    "TransferExpander",
    "TransferInfo",
    "TransferResult",
    "extract_origin_account",
    "extract_phone_number",
    "is_transfer_message",
]
