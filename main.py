"""
charter - main entry point

Builds a Foundation hub from .env, wires it to the HTTP surface, starts
the server. One file to understand how everything connects.

Usage:
    python main.py
"""

import os
import re
import sys
import logging

import uvicorn
from dotenv import load_dotenv

# ============================================================
# BOOTSTRAP
# ============================================================

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


class _SecretMaskingFilter(logging.Filter):
    """Redact 64-char hex strings (private keys) from all log output."""
    _PATTERN = re.compile(r'(?<![0-9a-fA-F])([0-9a-fA-F]{64})(?![0-9a-fA-F])')

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._PATTERN.sub('[REDACTED]', record.msg)
        if record.args:
            formatted = record.getMessage()
            if self._PATTERN.search(formatted):
                record.msg = self._PATTERN.sub('[REDACTED]', formatted)
                record.args = None
        return True


_mask_filter = _SecretMaskingFilter()
for _h in logging.root.handlers:
    _h.addFilter(_mask_filter)

logger = logging.getLogger("charter.main")


# ============================================================
# MODULE IMPORTS
# ============================================================

from api.server import create_app  # noqa: E402
from charter.assets import InMemoryAssets  # noqa: E402
from charter.config import CharterConfig, load_bytecode, load_opening_balances  # noqa: E402
from charter.hub import Foundation, UpgradeableBeacon  # noqa: E402
from charter.registry import StaticGovernance  # noqa: E402


def build_foundation(config: CharterConfig) -> Foundation:
    """Assemble the hub described by config. Exits on missing settings."""
    missing = [
        name for name, value in (
            ("FOUNDATION_ADDRESS", config.foundation_address),
            ("GOVERNANCE_ADDRESS", config.governance_address),
            ("BEACON_ADDRESS", config.beacon_address),
            ("FUND_IMPLEMENTATION", config.fund_implementation),
            ("PROXY_BYTECODE_PATH", config.proxy_bytecode_path),
            ("API_AUTH_SECRET", config.api_auth_secret),
        ) if not value
    ]
    if missing:
        logger.error(f"Missing config: {', '.join(missing)}")
        sys.exit(1)

    assets = InMemoryAssets()
    if config.opening_balances_path:
        for holder, asset, amount in load_opening_balances(config.opening_balances_path):
            assets.mint(holder, asset, amount)

    foundation = Foundation(
        address=config.foundation_address,
        governance=StaticGovernance(config.governance_address),
        beacon=UpgradeableBeacon(config.beacon_address, config.fund_implementation),
        assets=assets,
        proxy_creation_code=load_bytecode(config.proxy_bytecode_path),
    )
    logger.info(
        f"Foundation {foundation.address} | governance={foundation.governance[:10]}... | "
        f"beacon={foundation.beacon.address[:10]}..."
    )
    return foundation


def create_charter_app():
    config = CharterConfig.from_env()
    foundation = build_foundation(config)
    try:
        return create_app(foundation, auth_secret=config.api_auth_secret)
    except ValueError as e:
        logger.error(f"Cannot start API: {e}")
        sys.exit(1)


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    config = CharterConfig.from_env()
    reload = os.getenv("DEV", "").lower() in ("1", "true", "yes")

    logger.info(f"Starting server on {config.host}:{config.port} (reload={reload})")

    uvicorn.run(
        "main:create_charter_app",
        factory=True,
        host=config.host,
        port=config.port,
        reload=reload,
        log_level=LOG_LEVEL.lower(),
    )
