"""
Contract Artifacts - ABI + creation bytecode export for off-chain clients.

Layout written under the export directory:
  foundation.json                          Foundation ABI
  charteredFund.json                       CharteredFund ABI
  bytecode/foundation.bytecode.json        Foundation creation code
  bytecode/charteredFund.bytecode.json     CharteredFund creation code

Each file is exactly what `forge inspect <contract> <abi|bytecode> --json`
prints, so the bytecode files load with config.load_bytecode.
"""

import json
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger("charter.artifacts")

FOUNDATION_CONTRACT = "src/Foundation.sol:Foundation"
FUND_CONTRACT = "src/CharteredFund.sol:CharteredFund"

# (contract, inspected field, path relative to the export directory)
EXPORTS = [
    (FOUNDATION_CONTRACT, "abi", "foundation.json"),
    (FUND_CONTRACT, "abi", "charteredFund.json"),
    (FOUNDATION_CONTRACT, "bytecode", "bytecode/foundation.bytecode.json"),
    (FUND_CONTRACT, "bytecode", "bytecode/charteredFund.bytecode.json"),
]


@dataclass(frozen=True)
class ArtifactExport:
    contract: str
    kind: str          # "abi" or "bytecode"
    path: Path

    def command(self, forge: str = "forge") -> list[str]:
        return [forge, "inspect", self.contract, self.kind, "--json"]


def export_plan(out_dir: str | Path) -> list[ArtifactExport]:
    out_dir = Path(out_dir)
    return [ArtifactExport(contract, kind, out_dir / rel) for contract, kind, rel in EXPORTS]


def write_artifact(export: ArtifactExport, output: str) -> Path:
    """Validate forge's JSON output and store it at the export path."""
    try:
        data = json.loads(output)
    except json.JSONDecodeError as e:
        raise ValueError(f"forge printed no JSON for {export.contract} {export.kind}: {e}") from None
    if export.kind == "abi" and not isinstance(data, list):
        raise ValueError(f"{export.contract} ABI must be a JSON list, got {type(data).__name__}")
    if export.kind == "bytecode" and not (isinstance(data, str) and data):
        raise ValueError(f"{export.contract} bytecode must be a non-empty JSON string")

    export.path.parent.mkdir(parents=True, exist_ok=True)
    export.path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return export.path


def export_artifacts(
    out_dir: str | Path,
    contracts_dir: Optional[str | Path] = None,
    forge: str = "forge",
    build: bool = True,
    runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
) -> list[Path]:
    """
    Build the contracts and write every artifact in the export plan.

    A failing forge invocation raises subprocess.CalledProcessError; nothing
    after it is written.
    """
    cwd = str(contracts_dir) if contracts_dir else None
    if build:
        logger.info(f"forge build in {cwd or '.'}")
        runner([forge, "build"], cwd=cwd, check=True, capture_output=True, text=True)

    written = []
    for export in export_plan(out_dir):
        result = runner(export.command(forge), cwd=cwd, check=True, capture_output=True, text=True)
        written.append(write_artifact(export, result.stdout))
        logger.info(f"Wrote {export.kind} of {export.contract.split(':')[-1]} -> {export.path}")
    return written
