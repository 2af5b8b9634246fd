"""Loading of Scarb build outputs (Sierra class + CASM)."""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from deployer.exceptions import ArtifactNotBuilt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompiledContract:
    name: str
    sierra: dict
    casm: dict

    @property
    def abi(self) -> list:
        abi = self.sierra.get("abi", [])
        # Older toolchains emit the ABI as an embedded JSON string
        if isinstance(abi, str):
            return json.loads(abi)
        return abi

    def sierra_json(self) -> str:
        return json.dumps(self.sierra)

    def casm_json(self) -> str:
        return json.dumps(self.casm)


def artifact_paths(name: str, artifacts_dir: Path, package: str) -> tuple[Path, Path]:
    base = Path(artifacts_dir)
    return (
        base / f"{package}_{name}.contract_class.json",
        base / f"{package}_{name}.compiled_contract_class.json",
    )


def load_compiled_contract(name: str, artifacts_dir: str | Path, package: str) -> CompiledContract:
    """Load the compiled class of *name* from the Scarb target directory."""
    sierra_path, casm_path = artifact_paths(name, Path(artifacts_dir), package)
    try:
        with open(sierra_path) as f:
            sierra = json.load(f)
        with open(casm_path) as f:
            casm = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ArtifactNotBuilt(
            f"Failed to load compiled contract {name} from {artifacts_dir}. "
            "Make sure you run 'scarb build' first."
        ) from e

    logger.debug("Loaded compiled contract %s from %s", name, sierra_path)
    return CompiledContract(name=name, sierra=sierra, casm=casm)
