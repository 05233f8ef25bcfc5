"""
Airdrop Manifest and Report Writers

Writes the balance manifest produced by the allocation engine, plus an optional
run report and a per-delegator staker table.
"""

import json
import logging
import os
import tempfile
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from airdrop_types import AllocationEntry, AllocationResult, BalanceEntry

logger = logging.getLogger(__name__)

STAKER_COLUMNS = [
    "delegator_address",
    "destination_address",
    "validators",
    "staked_tokens",
    "eligible",
    "airdrop_tokens",
]


def _decimal_sum(values) -> Decimal:
    return sum(values, Decimal(0))


def write_json_atomic(path: Union[str, Path], data: Any):
    """
    Write JSON to path through a temporary file in the same directory.

    The target only ever holds a complete document; a failure leaves it untouched.
    """
    path = Path(path)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, path)
    except BaseException:
        os.unlink(tmp_path)
        raise


def write_manifest(path: Union[str, Path], balances: List[BalanceEntry]):
    """Save the balance list as a JSON array of bank module balances."""
    write_json_atomic(path, [balance.to_dict() for balance in balances])
    logger.info(f"Saved {len(balances)} balances to {path}")


def stakers_frame(entries: List[AllocationEntry]) -> pd.DataFrame:
    """
    Aggregate allocation entries per delegator.

    Returns:
        One row per delegator with summed stake and airdrop, the number of
        validators delegated to and whether any delegation was eligible
    """
    if not entries:
        return pd.DataFrame(columns=STAKER_COLUMNS)

    df = pd.DataFrame([
        {
            "delegator_address": entry.delegator_address,
            "validator_address": entry.validator_address,
            "staked_tokens": entry.staked_tokens,
            "eligible": entry.eligible,
            "airdrop_tokens": entry.airdrop_tokens,
            "destination_address": entry.destination_address,
        }
        for entry in entries
    ])

    stakers_df = df.groupby("delegator_address", sort=False).agg(
        destination_address=("destination_address", "first"),
        validators=("validator_address", "nunique"),
        staked_tokens=("staked_tokens", _decimal_sum),
        eligible=("eligible", "any"),
        airdrop_tokens=("airdrop_tokens", _decimal_sum),
    ).reset_index()

    return stakers_df[STAKER_COLUMNS]


def write_stakers_csv(path: Union[str, Path], entries: List[AllocationEntry]):
    stakers_df = stakers_frame(entries)
    stakers_df.to_csv(path, index=False)
    logger.info(f"Saved {len(stakers_df)} stakers to {path}")


def build_report(result: AllocationResult, *, block_height: str, token_price_usd: Decimal,
                 airdrop_distribution: int, denom: str, validators: int, delegations: int,
                 api_endpoints: Optional[List[Dict]] = None) -> Dict:
    """Collect the run figures into a JSON-serializable report."""
    stakers_df = stakers_frame(result.entries)
    eligible_delegators = int(stakers_df["eligible"].sum()) if len(stakers_df) else 0

    return {
        "metadata": {
            "generated_at": datetime.now().isoformat(),
            "block_height": block_height,
            "denom": denom,
            "token_price_usd": str(token_price_usd),
            "minimum_tokens_threshold": str(result.minimum_tokens_threshold),
            "total_delegated_tokens": str(result.total_delegated_tokens),
            "airdrop_distribution": airdrop_distribution,
            "total_airdropped": result.total_airdropped,
            "undistributed": airdrop_distribution - result.total_airdropped,
            "validators": validators,
            "delegations": delegations,
            "eligible_delegations": len(result.eligible_entries),
            "delegators": len(stakers_df),
            "eligible_delegators": eligible_delegators,
            "recipients": len(result.balances),
        },
        "api_endpoints": api_endpoints or [],
    }


def write_report(path: Union[str, Path], report: Dict):
    write_json_atomic(path, report)

    metadata = report["metadata"]
    logger.info(f"Saved run report to {path}")
    logger.info(f"Report summary: {metadata['recipients']} recipients, "
                f"{metadata['total_airdropped']} {metadata['denom']} airdropped, "
                f"{metadata['undistributed']} undistributed")
