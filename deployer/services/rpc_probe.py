"""Endpoint sanity check: does the RPC URL serve the chain it is configured for?"""

import logging

import httpx

from deployer.exceptions import ConfigurationError
from deployer.models.network import NetworkConfig
from deployer.validation import decode_short_string

logger = logging.getLogger(__name__)

RPC_TIMEOUT = 10.0  # seconds


async def fetch_chain_id(rpc_url: str, timeout: float = RPC_TIMEOUT) -> str:
    """Return the endpoint's chain id decoded to its short-string name (e.g. SN_MAIN)."""
    payload = {"jsonrpc": "2.0", "method": "starknet_chainId", "params": [], "id": 1}
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()
    except (httpx.HTTPError, ValueError) as e:
        raise ConfigurationError(f"RPC endpoint did not answer starknet_chainId: {e}") from e

    if "error" in body:
        raise ConfigurationError(f"RPC endpoint returned an error: {body['error']}")
    result = body.get("result")
    if not isinstance(result, str):
        raise ConfigurationError(f"Unexpected starknet_chainId result: {result!r}")
    try:
        return decode_short_string(result)
    except ValueError:
        return result


async def ensure_chain_matches(network_id: str, network: NetworkConfig) -> str:
    chain = await fetch_chain_id(network.endpoint())
    if chain != network_id:
        raise ConfigurationError(
            f"RPC endpoint for {network_id} serves chain {chain}; check rpcUrl/rpcUrlEnv"
        )
    logger.debug("RPC endpoint chain id matches %s", network_id)
    return chain
