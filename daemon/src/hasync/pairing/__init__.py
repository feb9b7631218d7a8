"""Pairing module for hasync.

Provides PIN based pairing including:
- PIN issuance and expiry sweeping
- Public key to client binding
- Certificate verification and revocation
"""

from .handler import PairingHandler, validate_pairing_request
from .registry import ClientRegistry
from .session_manager import PairingSessionManager

__all__ = [
    "ClientRegistry",
    "PairingHandler",
    "PairingSessionManager",
    "validate_pairing_request",
]
