"""
Configuration - .env + process environment.

python-dotenv loads .env (quoted values, comments and blank lines are
handled); already-exported variables win over the file.
"""

import os
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .protocol import PROTOCOL

logger = logging.getLogger("charter.config")

ROOT = Path(__file__).resolve().parent.parent


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw, 0)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass
class CharterConfig:
    rpc_url: str = ""
    chain_id: int = 0
    private_key: str = ""
    governance_address: str = ""
    foundation_address: str = ""
    beacon_address: str = ""
    fund_implementation: str = ""
    foundation_implementation: str = ""
    deployer_address: str = PROTOCOL.DETERMINISTIC_DEPLOYER
    proxy_bytecode_path: str = ""
    foundation_proxy_bytecode_path: str = ""
    vanity_prefix: str = ""
    miner_chunk: int = PROTOCOL.MINER_DEFAULT_CHUNK
    miner_workers: int = 0                # 0 = one per CPU
    opening_balances_path: str = ""       # JSON {holder: {asset: amount}} seeded into the off-chain book
    artifacts_path: str = ""              # export directory for ABIs + bytecode
    api_auth_secret: str = ""
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "CharterConfig":
        load_dotenv(env_file or ROOT / ".env")
        return cls(
            rpc_url=os.getenv("RPC_URL", ""),
            chain_id=_env_int("CHAIN_ID", 0),
            private_key=os.getenv("PRIVATE_KEY", ""),
            governance_address=os.getenv("GOVERNANCE_ADDRESS", ""),
            foundation_address=os.getenv("FOUNDATION_ADDRESS", ""),
            beacon_address=os.getenv("BEACON_ADDRESS", ""),
            fund_implementation=os.getenv("FUND_IMPLEMENTATION", ""),
            foundation_implementation=os.getenv("FOUNDATION_IMPLEMENTATION", ""),
            deployer_address=os.getenv("DEPLOYER_ADDRESS", "") or PROTOCOL.DETERMINISTIC_DEPLOYER,
            proxy_bytecode_path=os.getenv("PROXY_BYTECODE_PATH", ""),
            foundation_proxy_bytecode_path=os.getenv("FOUNDATION_PROXY_BYTECODE_PATH", ""),
            vanity_prefix=os.getenv("VANITY_PREFIX", ""),
            miner_chunk=_env_int("MINER_CHUNK", PROTOCOL.MINER_DEFAULT_CHUNK),
            miner_workers=_env_int("MINER_WORKERS", 0),
            opening_balances_path=os.getenv("OPENING_BALANCES_PATH", ""),
            artifacts_path=os.getenv("ARTIFACTS_PATH", ""),
            api_auth_secret=os.getenv("API_AUTH_SECRET", ""),
            host=os.getenv("HOST", "0.0.0.0"),
            port=_env_int("PORT", 8000),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


def load_bytecode(path: str | Path) -> bytes:
    """
    Read creation bytecode from a compiled artifact.

    Accepts `forge inspect <Contract> bytecode --json` output (a JSON string),
    a full artifact ({"bytecode": {"object": ...}} or {"bytecode": "0x..."}),
    or a plain hex file.
    """
    text = Path(path).read_text(encoding="utf-8").strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = text
    if not isinstance(data, (str, dict)):
        data = text    # bare hex without 0x can parse as a JSON number

    if isinstance(data, dict):
        data = data.get("bytecode", data.get("object", ""))
        if isinstance(data, dict):
            data = data.get("object", "")
    if not isinstance(data, str) or not data:
        raise ValueError(f"No bytecode found in {path}")

    raw = data[2:] if data.startswith("0x") else data
    code = bytes.fromhex(raw)
    logger.info(f"Loaded {len(code)} bytes of creation code from {path}")
    return code


def load_opening_balances(path: str | Path) -> list[tuple[str, str, int]]:
    """
    Read the balances the in-memory asset book starts with.

    Format: {"0xHolder": {"0xAsset": amount, ...}, ...}; amounts are ints or
    numeric strings ("0x"-hex accepted). Returns (holder, asset, amount) rows.
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected an object of holder -> {{asset: amount}}")

    rows = []
    for holder, holdings in data.items():
        if not isinstance(holdings, dict):
            raise ValueError(f"{path}: holdings of {holder} must be an object")
        for asset, amount in holdings.items():
            value = int(amount, 0) if isinstance(amount, str) else amount
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValueError(f"{path}: bad amount {amount!r} for {holder} / {asset}")
            rows.append((holder, asset, value))
    logger.info(f"Loaded {len(rows)} opening balances from {path}")
    return rows
