"""
Ledger Configuration

All configurable parameters for the ledger client and traversal engine.
Values can be overridden from the environment (and a .env file).
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

# Live ledgers serve at most this many transactions per get_transactions call
MAX_LIVE_BATCH = 2000

DEFAULT_PARALLEL_BATCHES = 10

DEFAULT_GATEWAY_URL = "http://127.0.0.1:8080"


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class LedgerConfig:
    """Configuration for the traversal engine."""

    # Trace every fetch at INFO level. No behavioral effect.
    debug: bool = False

    # Concurrent archive reads per round
    parallel_batches: int = DEFAULT_PARALLEL_BATCHES

    # Live segment read size (also the archive probe length)
    live_batch_size: int = MAX_LIVE_BATCH

    def __post_init__(self):
        if not isinstance(self.parallel_batches, int) or self.parallel_batches < 1:
            raise ValueError("parallel_batches must be a positive integer")
        if not isinstance(self.live_batch_size, int) or self.live_batch_size < 1:
            raise ValueError("live_batch_size must be a positive integer")

    @classmethod
    def from_env(cls) -> "LedgerConfig":
        """Build config from ICRC_LEDGER_* environment variables."""
        load_dotenv()
        return cls(
            debug=_env_flag("ICRC_LEDGER_DEBUG"),
            parallel_batches=int(os.environ.get("ICRC_LEDGER_PARALLEL_BATCHES", DEFAULT_PARALLEL_BATCHES)),
        )


@dataclass
class ClientConfig:
    """Configuration for the canister gateway transport."""
    gateway_url: str = DEFAULT_GATEWAY_URL
    request_timeout: float = 30.0

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """Build config from ICRC_GATEWAY_URL / ICRC_REQUEST_TIMEOUT."""
        load_dotenv()
        return cls(
            gateway_url=os.environ.get("ICRC_GATEWAY_URL", DEFAULT_GATEWAY_URL),
            request_timeout=float(os.environ.get("ICRC_REQUEST_TIMEOUT", 30.0)),
        )
