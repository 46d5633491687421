"""
Export contract ABIs and creation bytecode for off-chain clients.

Runs `forge build`, then `forge inspect ... abi|bytecode --json` for the
Foundation and CharteredFund contracts, writing the results under the
export directory (see charter/artifacts.py for the layout).

Usage:
    python scripts/export_artifacts.py --out ../bot/abi
    python scripts/export_artifacts.py --contracts ../contracts --no-build

Defaults come from .env: ARTIFACTS_PATH.
"""

import sys
import logging
import argparse
import subprocess
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from charter.artifacts import export_artifacts  # noqa: E402
from charter.config import CharterConfig  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("charter.export_artifacts")


def main():
    config = CharterConfig.from_env()

    parser = argparse.ArgumentParser(description="Export contract ABIs and bytecode")
    parser.add_argument("--out", default=config.artifacts_path, help="Export directory")
    parser.add_argument("--contracts", default=None, help="Foundry project directory (default: cwd)")
    parser.add_argument("--forge", default="forge", help="forge executable")
    parser.add_argument("--no-build", action="store_true", help="Skip `forge build`")
    args = parser.parse_args()

    if not args.out:
        parser.error("--out (or ARTIFACTS_PATH) is required")

    try:
        written = export_artifacts(args.out, args.contracts, forge=args.forge, build=not args.no_build)
    except FileNotFoundError:
        logger.error(f"{args.forge} not found; install Foundry or pass --forge")
        sys.exit(1)
    except subprocess.CalledProcessError as e:
        logger.error(f"{' '.join(e.cmd)} failed: {(e.stderr or '').strip()}")
        sys.exit(1)
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    logger.info(f"ABIs and bytecode written to {args.out} ({len(written)} files)")


if __name__ == "__main__":
    main()
