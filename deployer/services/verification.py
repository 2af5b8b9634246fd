"""Public source verification of declared classes via `sncast verify`."""

import asyncio
import logging
import shlex

from deployer.exceptions import VerificationFailed
from deployer.models.network import NetworkConfig

logger = logging.getLogger(__name__)


def verifier_network_name(network_id: str, network: NetworkConfig) -> str:
    if network.verifier_network:
        return network.verifier_network
    return "mainnet" if network_id == "SN_MAIN" else "sepolia"


class ContractVerifier:
    def __init__(self, verifier: str = "voyager", executable: str = "sncast"):
        self.verifier = verifier
        self.executable = executable

    def command(self, class_hash: str, contract_name: str, network_name: str) -> list[str]:
        return [
            self.executable, "verify",
            "--class-hash", class_hash,
            "--contract-name", contract_name,
            "--verifier", self.verifier,
            "--network", network_name,
        ]

    async def verify(self, class_hash: str, contract_name: str, network_name: str) -> None:
        cmd = self.command(class_hash, contract_name, network_name)
        logger.info("Running: %s", shlex.join(cmd))
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.STDOUT
            )
        except FileNotFoundError as e:
            raise VerificationFailed(f"{self.executable} not found on PATH") from e

        output, _ = await proc.communicate()
        text = output.decode(errors="replace").strip() if output else ""
        if proc.returncode != 0:
            raise VerificationFailed(
                f"{self.executable} verify exited with {proc.returncode}: {text[-500:]}"
            )
        if text:
            logger.info("%s", text)
