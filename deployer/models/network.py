"""Network and token configuration models."""

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, Field, field_validator

from deployer.exceptions import ConfigurationError
from deployer.validation import MAX_BPS, validate_address


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")


class LocalFees(_Frozen):
    sender_to_provider: int = Field(alias="senderToProvider", ge=0, le=MAX_BPS, strict=True)
    provider_to_aggregator: int = Field(alias="providerToAggregator", ge=0, le=MAX_BPS, strict=True)


class FxFees(_Frozen):
    sender_to_aggregator: int = Field(alias="senderToAggregator", ge=0, le=MAX_BPS, strict=True)
    provider_to_aggregator: int = Field(alias="providerToAggregator", ge=0, le=MAX_BPS, strict=True)


class TokenConfig(_Frozen):
    address: str
    local: LocalFees
    fx: FxFees

    @field_validator("address")
    @classmethod
    def _check_address(cls, v: str) -> str:
        if not v:
            raise ValueError("token address must not be empty")
        return validate_address(v)

    def fee_arguments(self) -> tuple[int, int, int, int]:
        """Fee values in the order set_token_fee_settings expects them."""
        return (
            self.local.sender_to_provider,
            self.local.provider_to_aggregator,
            self.fx.sender_to_aggregator,
            self.fx.provider_to_aggregator,
        )


class NetworkConfig(_Frozen):
    rpc_url: str = Field(default="", alias="rpcUrl")
    rpc_url_env: str | None = Field(default=None, alias="rpcUrlEnv")
    explorer_url: str = Field(alias="explorerUrl")
    verifier_network: str | None = Field(default=None, alias="verifierNetwork")
    supported_tokens: Mapping[str, TokenConfig] = Field(
        default_factory=dict, alias="supportedTokens", validate_default=True
    )
    deployed_address: str | None = Field(default=None, alias="deployedAddress")

    @field_validator("supported_tokens")
    @classmethod
    def _freeze_tokens(cls, v: Mapping[str, TokenConfig]) -> Mapping[str, TokenConfig]:
        return MappingProxyType(dict(v))

    @field_validator("deployed_address")
    @classmethod
    def _check_deployed(cls, v: str | None) -> str | None:
        if v in (None, ""):
            return None
        return validate_address(v)

    def endpoint(self) -> str:
        if not self.rpc_url:
            hint = f" (set {self.rpc_url_env})" if self.rpc_url_env else ""
            raise ConfigurationError(f"No RPC endpoint configured{hint}")
        return self.rpc_url

    def tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url.rstrip('/')}/tx/{tx_hash}"

    def contract_url(self, address: str) -> str:
        return f"{self.explorer_url.rstrip('/')}/contract/{address}"


@dataclass(frozen=True)
class DeploymentRecord:
    contract_address: str
    class_hash: str
    tx_hash: str
