"""Data models shared by the staking readers, the allocation engine and the writers."""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional


@dataclass(frozen=True)
class Validator:
    """Validator snapshot: tokens / delegator_shares is its share exchange rate."""

    operator_address: str
    tokens: int
    delegator_shares: Decimal


@dataclass(frozen=True)
class Delegation:
    """Shares one delegator holds against one validator."""

    delegator_address: str
    validator_address: str
    shares: Decimal


@dataclass
class DelegationPage:
    """Delegations of a single validator and the total the node reported, if any."""

    validator_address: str
    delegations: List[Delegation]
    total: Optional[int] = None


@dataclass
class AllocationEntry:
    """Per-delegation intermediate result of the allocation engine."""

    delegator_address: str
    validator_address: str
    staked_tokens: Decimal
    eligible: bool
    airdrop_tokens: Decimal = Decimal(0)
    destination_address: Optional[str] = None


@dataclass(frozen=True)
class BalanceEntry:
    address: str
    denom: str
    amount: int

    def to_dict(self) -> Dict:
        """Render in the bank module Balance JSON shape."""
        return {
            "address": self.address,
            "coins": [{"denom": self.denom, "amount": str(self.amount)}],
        }


@dataclass
class AllocationResult:
    balances: List[BalanceEntry]
    minimum_tokens_threshold: Decimal
    total_delegated_tokens: Decimal
    total_airdropped: int
    entries: List[AllocationEntry] = field(default_factory=list)

    @property
    def eligible_entries(self) -> List[AllocationEntry]:
        return [entry for entry in self.entries if entry.eligible]
