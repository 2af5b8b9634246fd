from pathlib import Path

from pydantic_settings import BaseSettings

from deployer.exceptions import ConfigurationError
from deployer.services.transactions import FinalityPolicy
from deployer.validation import is_valid_address

REQUIRED_CREDENTIALS = {
    "deployer_private_key": "DEPLOYER_PRIVATE_KEY",
    "deployer_address": "DEPLOYER_ADDRESS",
    "treasury_address": "TREASURY_ADDRESS",
    "aggregator_address": "AGGREGATOR_ADDRESS",
}


class Settings(BaseSettings):
    deployer_private_key: str = ""
    deployer_address: str = ""
    treasury_address: str = ""
    aggregator_address: str = ""

    networks_file: Path = Path("networks.json")

    # Scarb build output: <artifacts_dir>/<artifact_package>_<contract_name>.*.json
    artifacts_dir: Path = Path("target/dev")
    artifact_package: str = "paycrest"
    contract_name: str = "Gateway"

    finality_max_wait: float = 600.0
    finality_poll_interval: float = 5.0

    verifier: str = "voyager"

    log_level: str = "INFO"
    log_format: str = "text"

    class Config:
        env_file = ".env"
        extra = "ignore"

    def missing_credentials(self) -> list[str]:
        return [env for field, env in REQUIRED_CREDENTIALS.items() if not getattr(self, field)]

    def require_credentials(self) -> None:
        missing = self.missing_credentials()
        if missing:
            raise ConfigurationError(f"Please set {', '.join(missing)} in a .env file")
        for field in ("deployer_address", "treasury_address", "aggregator_address"):
            if not is_valid_address(getattr(self, field)):
                raise ConfigurationError(f"{REQUIRED_CREDENTIALS[field]} is not a valid address")

    def finality_policy(self) -> FinalityPolicy:
        return FinalityPolicy(
            max_wait=self.finality_max_wait, poll_interval=self.finality_poll_interval
        )
