import asyncio
from decimal import Decimal

import aiohttp
import pytest

from airdrop_errors import EmptyResponseError, IncompleteResponseError, NetworkError, ParseError
from resilient_fetch import BackoffPolicy, EndpointPool, ResilientFetchClient
from staking_query import (
    HEIGHT_HEADER,
    ChainStateReader,
    PriceOracleReader,
    parse_delegation,
    parse_validator,
    price_source_url,
)

FAST = BackoffPolicy(initial_interval=0, max_elapsed_time=None, max_attempts=3)


def with_reader(serve, fake_chain, scenario, endpoints=None, sleep=None):
    """Serve fake_chain and run scenario(chain_reader, oracle, base_url)."""

    async def main():
        async with serve(fake_chain.app()) as base, aiohttp.ClientSession() as session:
            kwargs = {"sleep": sleep} if sleep else {}
            client = ResilientFetchClient(session, FAST, **kwargs)
            pool = EndpointPool(endpoints(base) if endpoints else [base])
            reader = ChainStateReader(client, pool, base)
            return await scenario(reader, PriceOracleReader(client), base)

    return asyncio.run(main())


def test_parse_validator():
    v = parse_validator({"operator_address": "cosmosvaloper1x", "tokens": "1500",
                         "delegator_shares": "1000.000000000000000000"})

    assert v.operator_address == "cosmosvaloper1x"
    assert v.tokens == 1500
    assert v.delegator_shares == Decimal(1000)


@pytest.mark.parametrize("record", [
    {"tokens": "1", "delegator_shares": "1"},
    {"operator_address": "v", "tokens": "1.5", "delegator_shares": "1"},
    {"operator_address": "v", "tokens": "1", "delegator_shares": "lots"},
    {"operator_address": "v", "tokens": "-1", "delegator_shares": "1"},
])
def test_parse_validator_rejects_malformed(record):
    with pytest.raises(ParseError):
        parse_validator(record)


def test_parse_delegation():
    d = parse_delegation({"delegation": {"delegator_address": "cosmos1a", "validator_address": "v",
                                         "shares": "12.500000000000000000"}})

    assert (d.delegator_address, d.validator_address, d.shares) == ("cosmos1a", "v", Decimal("12.5"))


def test_parse_delegation_requires_addresses():
    with pytest.raises(ParseError):
        parse_delegation({"delegation": {"shares": "1"}})


def test_latest_height_is_kept_as_text(serve, fake_chain):
    fake_chain.latest_height = "18446744073709551617"

    async def scenario(reader, oracle, base):
        return await reader.latest_height()

    assert with_reader(serve, fake_chain, scenario) == "18446744073709551617"


def test_latest_height_must_be_numeric(serve, fake_chain):
    fake_chain.latest_height = "soon"

    async def scenario(reader, oracle, base):
        with pytest.raises(ParseError):
            await reader.latest_height()

    with_reader(serve, fake_chain, scenario)


def test_validators_and_delegations_share_height_header(serve, fake_chain):
    fake_chain.add_validator("val1", 1000, 1000)
    fake_chain.add_validator("val2", 2000, 1000)
    fake_chain.delegate("cosmos1a", "val1", 10)
    fake_chain.delegate("cosmos1b", "val1", 20)
    fake_chain.delegate("cosmos1a", "val2", 5)

    async def scenario(reader, oracle, base):
        validators = await reader.validators("777")
        pages = [await reader.delegations(v.operator_address, "777") for v in validators]
        return validators, pages

    validators, pages = with_reader(serve, fake_chain, scenario)

    assert [v.operator_address for v in validators] == ["val1", "val2"]
    assert validators[1].tokens == 2000
    assert [len(p.delegations) for p in pages] == [2, 1]
    assert pages[0].total == 2
    assert pages[1].delegations[0].shares == Decimal(5)
    assert fake_chain.heights == ["777", "777", "777"]
    assert HEIGHT_HEADER == "x-cosmos-block-height"


def test_empty_validator_set_is_an_error(serve, fake_chain):
    async def scenario(reader, oracle, base):
        with pytest.raises(EmptyResponseError):
            await reader.validators("1")

    with_reader(serve, fake_chain, scenario)


def test_capped_validator_page_is_an_error(serve, fake_chain):
    fake_chain.add_validator("val1", 1000, 1000)
    fake_chain.cap("validators")

    async def scenario(reader, oracle, base):
        with pytest.raises(IncompleteResponseError) as excinfo:
            await reader.validators("5")
        return str(excinfo.value)

    assert "height 5" in with_reader(serve, fake_chain, scenario)


def test_capped_delegation_page_is_an_error(serve, fake_chain):
    fake_chain.add_validator("val1", 1000, 1000)
    fake_chain.delegate("cosmos1a", "val1", 10)
    fake_chain.cap("val1")

    async def scenario(reader, oracle, base):
        with pytest.raises(IncompleteResponseError) as excinfo:
            await reader.delegations("val1", "5")
        return str(excinfo.value)

    message = with_reader(serve, fake_chain, scenario)

    assert "val1" in message
    assert "height 5" in message
    assert fake_chain.requests["delegations"] == 1


def test_transient_failures_are_retried(serve, fake_chain, no_sleep):
    fake_chain.add_validator("val1", 1000, 1000)
    fake_chain.fail("validators", 2)

    async def scenario(reader, oracle, base):
        return await reader.validators("5")

    validators = with_reader(serve, fake_chain, scenario, sleep=no_sleep)

    assert len(validators) == 1
    assert fake_chain.requests["validators"] == 3
    assert len(no_sleep.delays) == 2


def test_persistent_failure_surfaces_network_error(serve, fake_chain, no_sleep):
    fake_chain.add_validator("val1", 1000, 1000)
    fake_chain.fail("delegations", 10)

    async def scenario(reader, oracle, base):
        with pytest.raises(NetworkError):
            await reader.delegations("val1", "5")

    with_reader(serve, fake_chain, scenario, sleep=no_sleep)
    assert fake_chain.requests["delegations"] == FAST.max_attempts


def test_failing_endpoint_is_rotated_out(serve, fake_chain, no_sleep):
    fake_chain.add_validator("val1", 1000, 1000)

    async def scenario(reader, oracle, base):
        validators = await reader.validators("9")
        return validators, reader.endpoints.report()

    validators, report = with_reader(serve, fake_chain, scenario,
                                     endpoints=lambda base: [f"{base}/broken", base], sleep=no_sleep)

    assert len(validators) == 1
    assert fake_chain.requests["broken"] == 1
    assert report[0]["error_count"] == 0
    assert report[1]["address"].endswith("/broken")
    assert report[1]["error_count"] == 1


def test_price_source_url():
    assert price_source_url("https://api.example/simple/price?ids=", "cosmos") == \
        "https://api.example/simple/price?ids=cosmos&vs_currencies=usd"


@pytest.mark.parametrize("body, expected", [
    ('{"cosmos": {"usd": 9.87654321}}', Decimal("9.87654321")),
    ('{"cosmos": {"usd": "0.1"}}', Decimal("0.1")),
    ('{"cosmos": {"usd": 3}}', Decimal(3)),
])
def test_token_price_is_exact(serve, fake_chain, body, expected):
    fake_chain.price_text = body

    async def scenario(reader, oracle, base):
        url = price_source_url(f"{base}/simple/price?ids=", "cosmos")
        return await oracle.token_price_usd(url, "cosmos")

    price = with_reader(serve, fake_chain, scenario)

    assert price == expected
    assert fake_chain.last_price_query == {"ids": "cosmos", "vs_currencies": "usd"}


@pytest.mark.parametrize("body", [
    '{"osmosis": {"usd": 1}}',
    '{"cosmos": {"eur": 1}}',
    '{"cosmos": {"usd": "cheap"}}',
    '{"cosmos": {"usd": 0}}',
    '{"cosmos": {"usd": -2}}',
    '{"cosmos": {"usd": null}}',
    '[]',
])
def test_malformed_price_is_parse_error(serve, fake_chain, body):
    fake_chain.price_text = body

    async def scenario(reader, oracle, base):
        with pytest.raises(ParseError):
            await oracle.token_price_usd(f"{base}/simple/price?ids=cosmos&vs_currencies=usd", "cosmos")

    with_reader(serve, fake_chain, scenario)
