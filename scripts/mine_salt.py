"""
Mine a vanity CREATE2 salt.

Searches salts for a deployer + init code until the resulting address
starts with the requested hex prefix. The search is exhaustive and ordered,
so the same range always yields the same salt.

Usage:
    python scripts/mine_salt.py --init-code-hash 0x... --prefix 0x0000
    python scripts/mine_salt.py --bytecode out/Proxy.json --target 0xImpl --calldata 0x... --prefix 0xc4a7
    python scripts/mine_salt.py ... --embed 0xGovernance         # salt = governance ++ uint96(i)
    python scripts/mine_salt.py ... --index 7 --chunk 1000000    # one partition only (fan out by hand)

Defaults come from .env: DEPLOYER_ADDRESS, VANITY_PREFIX, MINER_CHUNK,
MINER_WORKERS, FOUNDATION_PROXY_BYTECODE_PATH.
"""

import sys
import json
import logging
import argparse
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from eth_utils import keccak  # noqa: E402

from charter.address import proxy_init_code  # noqa: E402
from charter.config import CharterConfig, load_bytecode  # noqa: E402
from charter.miner import PrefixPredicate, SaltSpace, mine, mine_parallel, partition  # noqa: E402
from charter.protocol import SaltNotFound  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("charter.mine_salt")


def _hex(value: str) -> bytes:
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


def resolve_init_code_hash(args, config: CharterConfig) -> bytes:
    if args.init_code_hash:
        digest = _hex(args.init_code_hash)
        if len(digest) != 32:
            raise ValueError("--init-code-hash must be 32 bytes")
        return digest

    bytecode_path = args.bytecode or config.foundation_proxy_bytecode_path
    if not bytecode_path:
        raise ValueError("Need --init-code-hash or --bytecode (or FOUNDATION_PROXY_BYTECODE_PATH)")
    code = load_bytecode(bytecode_path)
    if args.target:
        code = proxy_init_code(code, args.target, _hex(args.calldata or ""))
    return keccak(code)


def main():
    config = CharterConfig.from_env()

    parser = argparse.ArgumentParser(description="Mine a CREATE2 salt for a vanity address prefix")
    parser.add_argument("--deployer", default=config.deployer_address, help="CREATE2 deployer address")
    parser.add_argument("--init-code-hash", help="keccak256 of the full init code (0x-hex)")
    parser.add_argument("--bytecode", help="Creation bytecode artifact (forge inspect ... bytecode --json)")
    parser.add_argument("--target", help="Proxy constructor target (implementation or beacon)")
    parser.add_argument("--calldata", help="Proxy constructor init calldata (0x-hex)")
    parser.add_argument("--prefix", default=config.vanity_prefix, help="Vanity hex prefix, e.g. 0x0000")
    parser.add_argument("--embed", help="Identity to embed in the salt's high 160 bits")
    parser.add_argument("--start", type=lambda v: int(v, 0), default=0)
    parser.add_argument("--end", type=lambda v: int(v, 0), default=None,
                        help="Exclusive end of the search (default: start + 64 chunks)")
    parser.add_argument("--chunk", type=int, default=config.miner_chunk)
    parser.add_argument("--workers", type=int, default=config.miner_workers or None)
    parser.add_argument("--index", type=int, default=None, help="Mine only partition [chunk*index, chunk*(index+1))")
    parser.add_argument("--out", help="Write the result as JSON to this path")
    args = parser.parse_args()

    if not args.prefix:
        parser.error("--prefix (or VANITY_PREFIX) is required")

    try:
        init_code_hash = resolve_init_code_hash(args, config)
    except (ValueError, OSError) as e:
        parser.error(str(e))

    space = SaltSpace(deployer=args.deployer, init_code_hash=init_code_hash, prefix=args.embed)
    predicate = PrefixPredicate.from_hex(args.prefix)

    logger.info("=" * 60)
    logger.info("VANITY SALT SEARCH")
    logger.info(f"  Deployer:  {space.deployer}")
    logger.info(f"  Codehash:  0x{init_code_hash.hex()}")
    logger.info(f"  Prefix:    {args.prefix} ({predicate.bits} bits)")
    if space.prefix:
        logger.info(f"  Embedded:  {space.prefix}")

    try:
        if args.index is not None:
            search = partition(args.index, args.chunk)
            logger.info(f"  Partition: #{args.index} [{search.start}, {search.stop})")
            found = mine(predicate, search, space)
        else:
            end = args.end if args.end is not None else args.start + 64 * args.chunk
            logger.info(f"  Range:     [{args.start}, {end})")
            found = mine_parallel(predicate, space, args.start, end, args.chunk, args.workers)
    except SaltNotFound as e:
        logger.error(f"No salt found: {e}. Re-run over a different range.")
        sys.exit(2)

    result = found.to_dict()
    result.update({"deployer": space.deployer, "init_code_hash": "0x" + init_code_hash.hex()})
    logger.info(f"  Salt:      {result['salt']}")
    logger.info(f"  Address:   {result['address']}")
    logger.info("=" * 60)

    if args.out:
        Path(args.out).write_text(json.dumps(result, indent=2), encoding="utf-8")
        logger.info(f"Result saved to {args.out}")
    print(json.dumps(result))


if __name__ == "__main__":
    main()
