"""
Root propagator package.

Propagates identity roots from L1 to L2 and claims the resulting bridge
messages on L2.
"""

from .config import RelayerConfig
from .ledger import MessageLedger
from .models import MessageStatus, RelayMessage
from .relayer import RootRelayer

__all__ = ["RelayerConfig", "MessageLedger", "MessageStatus", "RelayMessage", "RootRelayer"]
__version__ = "0.1.0"
