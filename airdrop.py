#!/usr/bin/env python3
"""
Cosmos Delegator Airdrop Tool

This script snapshots delegations on a Cosmos chain at a block height and splits a
fixed airdrop pool across delegators in proportion to their stake, skipping
delegations worth less than a USD minimum. The result is a balance manifest for a
genesis patch or a bank module airdrop message.
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional

import aiohttp
from tqdm import tqdm

from airdrop_config import AirdropConfig, load_config
from airdrop_errors import AirdropError
from airdrop_report import build_report, write_manifest, write_report, write_stakers_csv
from airdrop_types import AllocationResult, Delegation, DelegationPage, Validator
from allocation import compute_airdrop
from resilient_fetch import EndpointPool, ResilientFetchClient
from staking_query import ChainStateReader, PriceOracleReader, price_source_url

logger = logging.getLogger(__name__)


@dataclass
class AirdropRun:
    """Everything one run fetched and computed."""

    block_height: str
    token_price_usd: Decimal
    validators: List[Validator]
    delegation_pages: List[DelegationPage]
    result: AllocationResult
    api_endpoints: List[Dict] = field(default_factory=list)

    @property
    def delegations(self) -> List[Delegation]:
        return [d for page in self.delegation_pages for d in page.delegations]


class AirdropTool:
    """
    Runs one airdrop computation against a chain.

    This class handles:
    - Resolving the snapshot height
    - Querying validators and their delegations at that height
    - Fetching the token price
    - Computing the balance list
    """

    def __init__(self, config: AirdropConfig, height: Optional[str] = None, concurrency: int = 1,
                 show_progress: bool = True, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.config = config.validate()
        self.height = height
        self.concurrency = max(1, concurrency)
        self.show_progress = show_progress
        self.sleep = sleep
        self.endpoints = EndpointPool(config.api_server_address, provider="config")

    async def run(self) -> AirdropRun:
        """Main execution function: fetch everything, then allocate."""
        config = self.config
        timeout = aiohttp.ClientTimeout(total=config.request_timeout)

        async with aiohttp.ClientSession(timeout=timeout) as session:
            fetch_client = ResilientFetchClient(session, config.backoff, sleep=self.sleep)
            chain = ChainStateReader(fetch_client, self.endpoints, config.rpc_server_address)
            oracle = PriceOracleReader(fetch_client)

            height = self.height or await chain.latest_height()
            logger.info(f"Taking snapshot at block height {height}")

            validators = await chain.validators(height)
            pages = await self.fetch_all_delegations(chain, validators, height)

            token_price_usd = await oracle.token_price_usd(
                price_source_url(config.price_source_api, config.coin_id), config.coin_id
            )

        delegations = [d for page in pages for d in page.delegations]
        logger.info(f"Fetched {len(delegations)} delegations across {len(validators)} validators")

        result = compute_airdrop(
            validators,
            delegations,
            token_price_usd,
            config.minimum_staking_tokens_worth,
            config.airdrop_distribution,
            config.address_prefix,
            config.airdrop_token_denom,
        )

        return AirdropRun(height, token_price_usd, validators, pages, result, self.endpoints.report())

    async def fetch_all_delegations(self, chain: ChainStateReader, validators: List[Validator],
                                    height: str) -> List[DelegationPage]:
        """
        Get the delegations of every validator.

        Fetches run one at a time unless a concurrency above 1 was requested.
        Pages are returned in validator order either way, and only once every
        validator has been fetched.
        """
        with tqdm(total=len(validators), desc="Fetching delegations", disable=not self.show_progress) as pbar:

            async def fetch_one(index: int, validator: Validator, semaphore: Optional[asyncio.Semaphore] = None):
                if semaphore is None:
                    page = await chain.delegations(validator.operator_address, height)
                else:
                    async with semaphore:
                        page = await chain.delegations(validator.operator_address, height)
                total = page.total if page.total is not None else len(page.delegations)
                logger.info(f"Validator {index} ({validator.operator_address}): {total} delegators")
                pbar.update(1)
                return page

            if self.concurrency == 1:
                return [await fetch_one(i, v) for i, v in enumerate(validators)]

            semaphore = asyncio.Semaphore(self.concurrency)
            tasks = [asyncio.ensure_future(fetch_one(i, v, semaphore)) for i, v in enumerate(validators)]
            try:
                return list(await asyncio.gather(*tasks))
            except BaseException:
                for task in tasks:
                    task.cancel()
                raise


def write_outputs(run: AirdropRun, config: AirdropConfig, output: str, report: Optional[str] = None,
                  stakers_csv: Optional[str] = None):
    """Persist the manifest and, when requested, the run report and staker table."""
    write_manifest(output, run.result.balances)

    if report:
        write_report(report, build_report(
            run.result,
            block_height=run.block_height,
            token_price_usd=run.token_price_usd,
            airdrop_distribution=config.airdrop_distribution,
            denom=config.airdrop_token_denom,
            validators=len(run.validators),
            delegations=len(run.delegations),
            api_endpoints=run.api_endpoints,
        ))

    if stakers_csv:
        write_stakers_csv(stakers_csv, run.result.entries)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Log to a timestamped file and to the console."""
    if log_file is None:
        log_file = f"airdrop_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compute a delegator airdrop for a Cosmos chain")

    parser.add_argument("-c", "--config", type=str, default="config.toml",
                        help="Path to TOML config file (default: config.toml)")
    parser.add_argument("--height", type=str,
                        help="Block height to snapshot (default: latest height reported by the RPC node)")
    parser.add_argument("--output", type=str, default="balance.json",
                        help="Output balance manifest path (default: balance.json)")
    parser.add_argument("--report", type=str,
                        help="Optional path for a JSON run report")
    parser.add_argument("--stakers-csv", type=str,
                        help="Optional path for a per-delegator CSV table")
    parser.add_argument("--concurrency", type=int, default=1,
                        help="Maximum number of validators whose delegations are fetched concurrently (default: 1)")
    parser.add_argument("--log-level", type=str, default="INFO",
                        help="Logging level (default: INFO)")
    parser.add_argument("--log-file", type=str,
                        help="Log file path (default: airdrop_<timestamp>.log)")
    parser.add_argument("--no-progress", action="store_true",
                        help="Disable the progress bar")

    args = parser.parse_args(argv)
    if args.height is not None and not args.height.isdigit():
        parser.error(f"--height must be a non-negative integer, got {args.height!r}")
    return args


async def main(argv: Optional[List[str]] = None) -> AirdropRun:
    """Main entry point for the script."""
    args = parse_args(argv)
    setup_logging(args.log_level, args.log_file)

    start_time = datetime.now()
    config = load_config(args.config)

    tool = AirdropTool(
        config,
        height=args.height,
        concurrency=args.concurrency,
        show_progress=not args.no_progress,
    )
    run = await tool.run()
    write_outputs(run, config, args.output, args.report, args.stakers_csv)

    logger.info(f"Total time taken: {datetime.now() - start_time}")
    return run


def cli():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Process interrupted by user")
        sys.exit(130)
    except AirdropError as e:
        logger.error(f"Airdrop failed: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Unhandled exception: {str(e)}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
