"""Network registry: the single source of truth for endpoints, tokens and fees."""

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType

from pydantic import ValidationError

from deployer.exceptions import ConfigurationError, UnknownNetwork
from deployer.models.network import NetworkConfig, TokenConfig

logger = logging.getLogger(__name__)


def _reject_duplicates(pairs: list[tuple[str, object]]) -> dict:
    seen: dict = {}
    for key, value in pairs:
        if key in seen:
            raise ConfigurationError(f"Duplicate key {key!r} in network store")
        seen[key] = value
    return seen


class NetworkRegistry:
    """Immutable table of network configurations.

    Built once per process, either from a mapping or from the JSON store via
    :meth:`load`. Every token and fee value is validated at construction so a
    bad store fails before any command touches the network.
    """

    def __init__(self, networks: Mapping[str, NetworkConfig], source: Path | None = None):
        self._networks = MappingProxyType(dict(networks))
        self.source = source

    @classmethod
    def from_dict(
        cls,
        raw: Mapping[str, Mapping],
        environ: Mapping[str, str] | None = None,
        source: Path | None = None,
    ) -> "NetworkRegistry":
        environ = os.environ if environ is None else environ
        networks: dict[str, NetworkConfig] = {}
        for network_id, entry in raw.items():
            if not isinstance(entry, Mapping):
                raise ConfigurationError(f"Network {network_id}: entry must be an object")
            entry = dict(entry)
            env_var = entry.get("rpcUrlEnv")
            if env_var and environ.get(env_var):
                entry["rpcUrl"] = environ[env_var]
            try:
                networks[network_id] = NetworkConfig.model_validate(entry)
            except ValidationError as e:
                raise ConfigurationError(f"Network {network_id}: invalid configuration\n{e}") from e
        return cls(networks, source=source)

    @classmethod
    def load(cls, path: str | Path, environ: Mapping[str, str] | None = None) -> "NetworkRegistry":
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise ConfigurationError(f"Network store not found: {path}") from e
        try:
            raw = json.loads(text, object_pairs_hook=_reject_duplicates)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Network store {path} is not valid JSON: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Network store {path} must be a JSON object keyed by network")

        registry = cls.from_dict(raw, environ=environ, source=path)
        logger.debug("Loaded %d networks from %s", len(registry), path)
        return registry

    def __len__(self) -> int:
        return len(self._networks)

    def __contains__(self, network_id: object) -> bool:
        return network_id in self._networks

    def network_ids(self) -> list[str]:
        return list(self._networks)

    def resolve(self, network_id: str) -> NetworkConfig:
        try:
            return self._networks[network_id]
        except KeyError:
            raise UnknownNetwork(network_id, self.network_ids()) from None

    def tokens(self, network_id: str) -> tuple[tuple[str, TokenConfig], ...]:
        """Supported tokens of a network, in store order."""
        return tuple(self.resolve(network_id).supported_tokens.items())

    def deployed_address(self, network_id: str) -> str | None:
        return self.resolve(network_id).deployed_address
