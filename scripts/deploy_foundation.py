"""
Deploy the Foundation hub proxy via Nick's Deterministic Deployment Proxy (DDP).

The hub is an ERC1967 proxy whose init code is
  proxyCreationCode ++ abi.encode(foundationImplementation, initialize(governance, beacon))
deployed with a (usually mined) salt, so its address is known up front:
  keccak256(0xff ++ ddp ++ salt ++ keccak256(initcode))[12:]

Usage:
    python scripts/deploy_foundation.py --salt 0x...            # Deploy with a mined salt
    python scripts/deploy_foundation.py --salt 0x... --dry-run  # Show predicted address only
    python scripts/deploy_foundation.py --salt 0x... --verify   # Check an existing deployment

Prerequisites (.env):
    RPC_URL, PRIVATE_KEY, GOVERNANCE_ADDRESS, BEACON_ADDRESS,
    FOUNDATION_IMPLEMENTATION, FOUNDATION_PROXY_BYTECODE_PATH

After deployment FOUNDATION_ADDRESS is written to .env.
"""

import re
import sys
import json
import time
import logging
import argparse
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from eth_utils import keccak  # noqa: E402

from charter.address import (  # noqa: E402
    compute_create2_address,
    encode_initialize_call,
    expect_address,
    proxy_init_code,
    to_salt,
)
from charter.chain import FoundationClient  # noqa: E402
from charter.config import CharterConfig, load_bytecode  # noqa: E402
from charter.protocol import AddressMismatch  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("charter.deploy_foundation")


# ============================================================
# INITCODE + PREDICTION
# ============================================================

def build_foundation_initcode(config: CharterConfig) -> bytes:
    missing = [
        name for name, value in (
            ("GOVERNANCE_ADDRESS", config.governance_address),
            ("BEACON_ADDRESS", config.beacon_address),
            ("FOUNDATION_IMPLEMENTATION", config.foundation_implementation),
            ("FOUNDATION_PROXY_BYTECODE_PATH", config.foundation_proxy_bytecode_path),
        ) if not value
    ]
    if missing:
        raise ValueError(f"Missing config: {', '.join(missing)}")

    proxy_code = load_bytecode(config.foundation_proxy_bytecode_path)
    init_calldata = encode_initialize_call(config.governance_address, config.beacon_address)
    return proxy_init_code(proxy_code, config.foundation_implementation, init_calldata)


def predict_foundation_address(config: CharterConfig, salt: bytes, initcode: bytes) -> str:
    return compute_create2_address(config.deployer_address, salt, keccak(initcode))


# ============================================================
# DEPLOY
# ============================================================

def deploy_foundation(config: CharterConfig, salt: bytes, initcode: bytes, dry_run: bool = False) -> str:
    from web3 import Web3

    predicted = predict_foundation_address(config, salt, initcode)

    w3 = Web3(Web3.HTTPProvider(config.rpc_url))
    if not w3.is_connected():
        logger.error(f"Cannot connect to RPC: {config.rpc_url}")
        sys.exit(1)
    if not config.private_key:
        logger.error("PRIVATE_KEY not set in .env")
        sys.exit(1)

    account = w3.eth.account.from_key(config.private_key)
    chain_id = config.chain_id or w3.eth.chain_id

    logger.info(f"\n{'=' * 60}")
    logger.info(f"FOUNDATION DEPLOYMENT: chain {chain_id}")
    logger.info(f"  Sender:      {account.address}")
    logger.info(f"  Deployer:    {config.deployer_address}")
    logger.info(f"  Foundation:  {predicted} (deterministic)")

    if len(w3.eth.get_code(predicted)) > 0:
        logger.info("  STATUS:      ALREADY DEPLOYED: nothing to do")
        return predicted

    if dry_run:
        logger.info("  STATUS:      NOT DEPLOYED (dry run, no transaction sent)")
        return predicted

    if len(w3.eth.get_code(Web3.to_checksum_address(config.deployer_address))) == 0:
        logger.error(f"Deterministic deployer not found at {config.deployer_address}. Check RPC_URL.")
        sys.exit(1)

    # DDP interface: raw call with calldata = salt (32 bytes) ++ initcode
    tx = {
        "from": account.address,
        "to": Web3.to_checksum_address(config.deployer_address),
        "data": "0x" + (salt + initcode).hex(),
        "value": 0,
        "nonce": w3.eth.get_transaction_count(account.address),
        "gasPrice": w3.eth.gas_price,
        "chainId": chain_id,
    }
    try:
        gas = w3.eth.estimate_gas(tx)
        tx["gas"] = int(gas * 1.3)
        logger.info(f"  Gas estimate: {gas} (using {tx['gas']})")
    except Exception as e:
        tx["gas"] = 5_000_000
        logger.warning(f"  Gas estimation failed ({e}), using 5M fallback")

    signed = w3.eth.account.sign_transaction(tx, config.private_key)
    tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
    logger.info(f"  TX: {tx_hash.hex()}")
    receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=120)
    if receipt["status"] != 1:
        logger.error(f"  FOUNDATION DEPLOYMENT FAILED: {tx_hash.hex()}")
        sys.exit(1)

    # Abort before use if the deployment landed anywhere else
    client = FoundationClient()
    client.initialize(config.rpc_url, config.private_key, predicted, chain_id=chain_id, w3=w3)
    for attempt in range(5):
        try:
            client.verify_deployment(predicted)
            break
        except AddressMismatch:
            if attempt == 4:
                raise
            time.sleep(1)

    logger.info(f"  STATUS:      DEPLOYED SUCCESSFULLY at {predicted}")
    return predicted


def save_foundation_address(address: str, salt: bytes) -> None:
    """Write FOUNDATION_ADDRESS to .env and data/foundation_config.json."""
    env_path = ROOT / ".env"
    env_content = env_path.read_text(encoding="utf-8") if env_path.exists() else ""
    line = f"FOUNDATION_ADDRESS={address}"
    if "FOUNDATION_ADDRESS=" in env_content:
        env_content = re.sub(r"FOUNDATION_ADDRESS=.*", line, env_content)
    else:
        env_content += f"\n# Foundation hub: deterministic address\n{line}\n"
    env_path.write_text(env_content, encoding="utf-8")

    config_path = ROOT / "data" / "foundation_config.json"
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        json.dump({"address": address, "salt_hex": salt.hex(), "deployed_at": time.time()}, f, indent=2)
    logger.info("Foundation address saved to .env and data/foundation_config.json")


# ============================================================
# CLI
# ============================================================

def main():
    config = CharterConfig.from_env()

    parser = argparse.ArgumentParser(description="Deploy the Foundation hub at its deterministic address")
    parser.add_argument("--salt", required=True, help="CREATE2 salt (0x-hex, from scripts/mine_salt.py)")
    parser.add_argument("--expect", help="Address the salt was mined for; abort if the prediction differs")
    parser.add_argument("--dry-run", action="store_true", help="Show predicted address without deploying")
    parser.add_argument("--verify", action="store_true", help="Only check that the hub is deployed")
    args = parser.parse_args()

    try:
        salt = to_salt(args.salt)
        initcode = build_foundation_initcode(config)
    except (ValueError, OSError) as e:
        parser.error(str(e))

    predicted = predict_foundation_address(config, salt, initcode)
    if args.expect:
        # Mined salt computed against different parameters: fatal
        expect_address(predicted, args.expect)

    if args.verify:
        client = FoundationClient()
        if not client.initialize(config.rpc_url, config.private_key, predicted, chain_id=config.chain_id or None):
            sys.exit(1)
        client.verify_deployment(predicted)
        logger.info(f"  {predicted} [DEPLOYED]")
        return

    address = deploy_foundation(config, salt, initcode, dry_run=args.dry_run)
    if not args.dry_run:
        save_foundation_address(address, salt)


if __name__ == "__main__":
    main()
