"""Shared fixtures: bech32 addresses and a fake chain node served with aiohttp."""

from collections import defaultdict
from contextlib import asynccontextmanager
from decimal import Decimal

import bech32
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer


def make_address(prefix, seed, length=20):
    payload = bytes([seed % 256]) * length
    return bech32.bech32_encode(prefix, bech32.convertbits(payload, 8, 5))


class FakeChain:
    """
    Minimal Cosmos LCD + Tendermint RPC + price index.

    Records the height header of every staking request and can be told to fail a
    route a number of times before answering.
    """

    def __init__(self):
        self.latest_height = "123456"
        self.validators = []
        self.delegations = defaultdict(list)
        self.price_text = '{"cosmos": {"usd": 1}}'
        self.failures = {}
        self.heights = []
        self.requests = defaultdict(int)
        self.last_price_query = None
        self.capped = set()

    def add_validator(self, operator, tokens, shares):
        self.validators.append({
            "operator_address": operator,
            "tokens": str(tokens),
            "delegator_shares": f"{Decimal(shares):.18f}",
        })

    def delegate(self, delegator, operator, shares):
        self.delegations[operator].append({
            "delegation": {
                "delegator_address": delegator,
                "validator_address": operator,
                "shares": f"{Decimal(shares):.18f}",
            },
            "balance": {"denom": "uatom", "amount": str(int(Decimal(shares)))},
        })

    def cap(self, key):
        """Answer the validator set ("validators") or an operator's delegations with a next_key."""
        self.capped.add(key)

    def _pagination(self, key, total):
        return {"next_key": "bW9yZQ==" if key in self.capped else None, "total": str(total)}

    def fail(self, route, times, status=503):
        self.failures[route] = (times, status)

    def _maybe_fail(self, route):
        self.requests[route] += 1
        times, status = self.failures.get(route, (0, 200))
        if times > 0:
            self.failures[route] = (times - 1, status)
            return web.Response(status=status, text="service unavailable")
        return None

    async def status(self, request):
        failure = self._maybe_fail("status")
        if failure is not None:
            return failure
        return web.json_response(
            {"jsonrpc": "2.0", "id": -1, "result": {"sync_info": {"latest_block_height": self.latest_height}}}
        )

    async def validators_handler(self, request):
        self.heights.append(request.headers.get("x-cosmos-block-height"))
        failure = self._maybe_fail("validators")
        if failure is not None:
            return failure
        return web.json_response({
            "validators": self.validators,
            "pagination": self._pagination("validators", len(self.validators)),
        })

    async def delegations_handler(self, request):
        self.heights.append(request.headers.get("x-cosmos-block-height"))
        records = self.delegations[request.match_info["validator"]]
        failure = self._maybe_fail("delegations")
        if failure is not None:
            return failure
        return web.json_response({
            "delegation_responses": records,
            "pagination": self._pagination(request.match_info["validator"], len(records)),
        })

    async def price(self, request):
        self.last_price_query = dict(request.query)
        failure = self._maybe_fail("price")
        if failure is not None:
            return failure
        return web.Response(text=self.price_text, content_type="application/json")

    async def broken(self, request):
        self.requests["broken"] += 1
        return web.Response(status=502, text="bad gateway")

    def app(self):
        app = web.Application()
        app.router.add_get("/status", self.status)
        app.router.add_get("/cosmos/staking/v1beta1/validators", self.validators_handler)
        app.router.add_get("/cosmos/staking/v1beta1/validators/{validator}/delegations", self.delegations_handler)
        app.router.add_get("/simple/price", self.price)
        app.router.add_get("/broken/{tail:.*}", self.broken)
        return app


@asynccontextmanager
async def serve_app(app):
    async with TestServer(app) as server:
        yield str(server.make_url("/")).rstrip("/")


@pytest.fixture
def address():
    """Factory for valid bech32 addresses: address(prefix, seed, length=20)."""
    return make_address


@pytest.fixture
def fake_chain():
    return FakeChain()


@pytest.fixture
def serve():
    return serve_app


@pytest.fixture
def no_sleep():
    """Sleep replacement that records requested delays instead of waiting."""
    delays = []

    async def sleep(seconds):
        delays.append(seconds)

    sleep.delays = delays
    return sleep
