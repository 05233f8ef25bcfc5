"""
Airdrop allocation engine.

Splits a fixed token pool across delegators in proportion to their staked
tokens, excluding delegations worth less than a USD minimum. All arithmetic is
18-digit fixed-point decimal; every division truncates toward zero and
multiplication always happens before division.
"""

import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

import address_codec
from airdrop_errors import ConfigurationError, StateMismatchError
from airdrop_types import AllocationEntry, AllocationResult, BalanceEntry, Delegation, Validator
from decimal_math import ZERO, mul, quo_truncate, to_dec, truncate, truncate_int

logger = logging.getLogger(__name__)


def staked_tokens(delegation: Delegation, validator: Validator) -> Decimal:
    """
    Convert a delegation's shares into whole tokens at the validator's exchange rate.

    shares * tokens is computed first and only then divided by the validator's
    delegator shares; the quotient is truncated to whole base units, the amount
    the chain itself reports as the delegation balance. A validator without
    shares holds no stake.
    """
    if validator.delegator_shares == 0:
        return ZERO
    return truncate(quo_truncate(mul(delegation.shares, validator.tokens), validator.delegator_shares))


def minimum_tokens_threshold(minimum_usd: Decimal, token_price_usd: Decimal) -> Decimal:
    """Number of tokens worth minimum_usd at token_price_usd, truncated."""
    return quo_truncate(minimum_usd, token_price_usd)


def _require(**values):
    missing = [name for name, value in values.items() if value is None or value == ""]
    if missing:
        raise ConfigurationError(f"Missing required allocation settings: {', '.join(missing)}")


def compute_airdrop(validators: Iterable[Validator], delegations: Iterable[Delegation],
                    token_price_usd: Optional[Decimal], minimum_usd, total_airdrop_tokens,
                    address_prefix: Optional[str], denom: Optional[str]) -> AllocationResult:
    """
    Compute the airdrop balance list.

    Args:
        validators: The full validator set at the snapshot height
        delegations: Delegations of every validator, flattened
        token_price_usd: USD price of the staked token
        minimum_usd: Minimum USD value a delegation must be worth to be eligible
        total_airdrop_tokens: Size of the pool to split
        address_prefix: Bech32 prefix of the destination chain
        denom: Denomination of the airdropped token

    Returns:
        The balances, one per destination address, and the run figures

    Raises:
        ConfigurationError: a required setting is missing
        StateMismatchError: a delegation references an unknown validator
        DecodeError: a delegator address is not valid bech32
    """
    _require(token_price_usd=token_price_usd, minimum_usd=minimum_usd,
             total_airdrop_tokens=total_airdrop_tokens, address_prefix=address_prefix, denom=denom)
    if token_price_usd <= 0:
        raise ConfigurationError(f"Token price must be positive, got {token_price_usd}")

    validator_index: Dict[str, Validator] = {v.operator_address: v for v in validators}
    airdrop_pool = to_dec(total_airdrop_tokens)

    threshold = minimum_tokens_threshold(to_dec(minimum_usd), token_price_usd)
    logger.info(f"Minimum tokens threshold for {minimum_usd} USD: {threshold}")

    # Eligibility pass
    entries: List[AllocationEntry] = []
    total_delegated_tokens = ZERO
    for delegation in delegations:
        validator = validator_index.get(delegation.validator_address)
        if validator is None:
            raise StateMismatchError(
                f"Delegation of {delegation.delegator_address} references unknown validator "
                f"{delegation.validator_address}"
            )

        if validator.delegator_shares == 0:
            logger.debug(f"Skipping delegation of {delegation.delegator_address} to zero-share validator "
                         f"{validator.operator_address}")
            continue

        tokens = staked_tokens(delegation, validator)
        eligible = tokens >= threshold
        entries.append(AllocationEntry(delegation.delegator_address, delegation.validator_address, tokens, eligible))
        if eligible:
            total_delegated_tokens += tokens

    logger.info(f"Total eligible delegated tokens: {total_delegated_tokens}")

    if total_delegated_tokens == 0:
        logger.warning("No delegation meets the minimum threshold; nothing to airdrop")
        return AllocationResult([], threshold, total_delegated_tokens, 0, entries)

    # Distribution pass
    airdrop_map: Dict[str, int] = {}
    for entry in entries:
        if not entry.eligible:
            continue

        logger.debug(f"Delegator {entry.delegator_address} staking tokens: {entry.staked_tokens}")
        entry.airdrop_tokens = quo_truncate(mul(airdrop_pool, entry.staked_tokens), total_delegated_tokens)
        entry.destination_address = address_codec.convert(entry.delegator_address, address_prefix)
        logger.debug(f"Airdrop tokens for {entry.destination_address}: {entry.airdrop_tokens}")

        # Same address may delegate to several validators
        airdrop_map[entry.destination_address] = (
            airdrop_map.get(entry.destination_address, 0) + truncate_int(entry.airdrop_tokens)
        )

    # Emission pass
    balances: List[BalanceEntry] = []
    check_amount = 0
    for address, amount in airdrop_map.items():
        # Truncation can leave a small eligible stake with nothing
        if amount == 0:
            continue
        check_amount += amount
        balances.append(BalanceEntry(address, denom, amount))

    logger.info(f"Airdrop calculation complete: {check_amount} {denom} to {len(balances)} addresses")
    return AllocationResult(balances, threshold, total_delegated_tokens, check_amount, entries)
