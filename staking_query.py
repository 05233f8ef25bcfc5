"""
Cosmos Staking Query

Reads the validator set and every validator's delegations from a Cosmos SDK REST
(LCD) endpoint at a pinned block height, the latest block height from a
Tendermint RPC node, and the native token's USD price from a price index.
"""

import logging
import urllib.parse
from decimal import Decimal
from typing import Any, Dict, List

from airdrop_errors import EmptyResponseError, IncompleteResponseError, NetworkError, ParseError
from airdrop_types import Delegation, DelegationPage, Validator
from decimal_math import to_dec
from resilient_fetch import EndpointPool, ResilientFetchClient

logger = logging.getLogger(__name__)

# Header the gRPC gateway uses to answer a query from historical state
HEIGHT_HEADER = "x-cosmos-block-height"

# Large enough that the whole validator set or delegation list fits in one page
LIMIT_PER_PAGE = 100000000


def parse_validator(data: Dict[str, Any]) -> Validator:
    """Build a Validator from a staking REST record."""
    operator_address = data.get("operator_address", "")
    if not operator_address:
        raise ParseError(f"Validator record without operator_address: {data!r}")

    try:
        tokens = int(str(data.get("tokens", "0")))
        delegator_shares = to_dec(str(data.get("delegator_shares", "0")))
    except ValueError as e:
        raise ParseError(f"Invalid tokens or shares for validator {operator_address}: {e}") from e

    if tokens < 0 or delegator_shares < 0:
        raise ParseError(f"Negative tokens or shares for validator {operator_address}")

    return Validator(operator_address, tokens, delegator_shares)


def parse_delegation(data: Dict[str, Any]) -> Delegation:
    """Build a Delegation from a delegation_responses record."""
    delegation = data.get("delegation") or {}
    delegator_address = delegation.get("delegator_address", "")
    validator_address = delegation.get("validator_address", "")
    if not delegator_address or not validator_address:
        raise ParseError(f"Delegation record missing addresses: {data!r}")

    try:
        shares = to_dec(str(delegation.get("shares", "0")))
    except ValueError as e:
        raise ParseError(f"Invalid shares for delegator {delegator_address}: {e}") from e

    return Delegation(delegator_address, validator_address, shares)


class ChainStateReader:
    """
    Reads staking state from a Cosmos chain.

    Every staking query carries the same height header, so all validators and
    delegations of a run are answered from one historical state.
    """

    def __init__(self, fetch_client: ResilientFetchClient, endpoints: EndpointPool, rpc_address: str):
        self.fetch_client = fetch_client
        self.endpoints = endpoints
        self.rpc_address = rpc_address.rstrip("/")

    async def _query(self, path: str, height: str, description: str) -> Dict:
        """GET a staking REST path at height, rotating endpoints on failure."""
        headers = {HEIGHT_HEADER: str(height)}

        async def attempt():
            endpoint = self.endpoints.pick()
            url = f"{endpoint.address}/{path}"
            try:
                return await self.fetch_client.request_json(url, headers)
            except NetworkError:
                self.endpoints.record_error(endpoint)
                raise

        result = await self.fetch_client.fetch(attempt, description)
        if not isinstance(result, dict):
            raise ParseError(f"Unexpected response for {description}: {result!r}")
        return result

    async def latest_height(self) -> str:
        """
        Get the latest block height reported by the RPC node.

        Returns:
            The height as the decimal string the node reported
        """
        url = f"{self.rpc_address}/status"
        data = await self.fetch_client.get_json(url, "fetch latest block height")

        try:
            height = data["result"]["sync_info"]["latest_block_height"]
        except (KeyError, TypeError) as e:
            raise ParseError(f"Node status from {url} has no latest_block_height") from e

        height = str(height)
        if not height.isdigit():
            raise ParseError(f"Node status from {url} reported invalid height {height!r}")

        logger.info(f"Latest block height is {height}")
        return height

    async def validators(self, height: str) -> List[Validator]:
        """
        Get the complete validator set at height, in a single page.

        Raises:
            EmptyResponseError: if the node returned no validators
            IncompleteResponseError: if the node capped the page
        """
        path = f"cosmos/staking/v1beta1/validators?pagination.limit={LIMIT_PER_PAGE}"
        result = await self._query(path, height, f"fetch validators at height {height}")

        records = result.get("validators")
        if not records:
            raise EmptyResponseError(f"No validators returned at height {height}")

        if (result.get("pagination") or {}).get("next_key"):
            raise IncompleteResponseError(
                f"Validator page at height {height} was capped by the node after {len(records)} validators"
            )

        validators = [parse_validator(record) for record in records]
        logger.info(f"Fetched {len(validators)} validators at height {height}")
        return validators

    async def delegations(self, validator_addr: str, height: str) -> DelegationPage:
        """
        Get all delegations for a validator at height, in a single page.

        Args:
            validator_addr: The validator operator address
            height: Block height to answer from

        Returns:
            The delegations and the total count the node reported

        Raises:
            IncompleteResponseError: if the node capped the page
        """
        quoted = urllib.parse.quote(validator_addr)
        path = (f"cosmos/staking/v1beta1/validators/{quoted}/delegations"
                f"?pagination.limit={LIMIT_PER_PAGE}&pagination.count_total=true")
        result = await self._query(path, height, f"fetch delegations of {validator_addr} at height {height}")

        delegations = [parse_delegation(record) for record in result.get("delegation_responses") or []]

        pagination = result.get("pagination") or {}
        if pagination.get("next_key"):
            raise IncompleteResponseError(
                f"Delegation page for {validator_addr} at height {height} was capped by the node "
                f"after {len(delegations)} delegations"
            )

        total = pagination.get("total")
        try:
            total = int(total) if total is not None else None
        except (TypeError, ValueError):
            logger.warning(f"Ignoring non-numeric delegation total {total!r} for {validator_addr}")
            total = None

        return DelegationPage(validator_addr, delegations, total)


def price_source_url(price_source_api: str, coin_id: str) -> str:
    """Build the price index query URL from the configured prefix."""
    return f"{price_source_api}{coin_id}&vs_currencies=usd"


class PriceOracleReader:
    """Reads a token's USD price from a CoinGecko-style simple price endpoint."""

    def __init__(self, fetch_client: ResilientFetchClient):
        self.fetch_client = fetch_client

    async def token_price_usd(self, source_url: str, coin_id: str) -> Decimal:
        """
        Fetch the USD price of coin_id.

        The response is shaped {coin_id: {"usd": price}}; price may be a JSON number
        or a string and is kept as exact decimal text.

        Raises:
            ParseError: missing keys, non-numeric or non-positive price
        """
        data = await self.fetch_client.get_json(source_url, f"fetch {coin_id} price")

        try:
            raw_price = data[coin_id]["usd"]
        except (KeyError, TypeError) as e:
            raise ParseError(f"Price response from {source_url} has no usd price for {coin_id}") from e

        try:
            price = to_dec(raw_price if isinstance(raw_price, (str, int, Decimal)) else str(raw_price))
        except ValueError as e:
            raise ParseError(f"Invalid usd price {raw_price!r} for {coin_id}: {e}") from e

        if price <= 0:
            raise ParseError(f"Non-positive usd price {price} for {coin_id}")

        logger.info(f"Fetched {coin_id} price: {price.normalize():f} USD")
        return price
