"""bluepairy: unattended discovery, pairing and connection of BlueZ devices."""

from .config import BluepairyConfig
from .errors import BluezError, TransportError
from .manager import PairingManager, PairingResult
from .pin import guess_pin
from .transport import Transport

__all__ = [
    "BluepairyConfig",
    "BluezError",
    "PairingManager",
    "PairingResult",
    "Transport",
    "TransportError",
    "guess_pin",
]
