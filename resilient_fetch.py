"""
Resilient fetch client.

Wraps idempotent remote calls (staking queries, node status, price lookups) in an
exponential-backoff retry loop and tracks REST endpoint health.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import aiohttp
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    stop_never,
    wait_exponential,
)

from airdrop_errors import ConfigurationError, NetworkError, ParseError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Exponential backoff settings for remote calls.

    The wait before retry n is initial_interval * multiplier ** (n - 1), capped at
    max_interval. Retrying stops once max_elapsed_time seconds have passed or
    max_attempts calls have been made, whichever comes first. None disables a limit.
    """

    initial_interval: float = 0.5
    multiplier: float = 1.5
    max_interval: float = 60.0
    max_elapsed_time: Optional[float] = 900.0
    max_attempts: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackoffPolicy":
        """Build a policy from a config table, keeping defaults for absent keys."""
        known = set(cls.__dataclass_fields__)
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown backoff settings: {', '.join(sorted(unknown))}")
        return cls(**data)

    def stop_condition(self):
        stops = []
        if self.max_elapsed_time is not None:
            stops.append(stop_after_delay(self.max_elapsed_time))
        if self.max_attempts is not None:
            stops.append(stop_after_attempt(self.max_attempts))
        if not stops:
            return stop_never
        condition = stops[0]
        for stop in stops[1:]:
            condition = condition | stop
        return condition

    def wait_strategy(self):
        return wait_exponential(
            multiplier=self.initial_interval,
            exp_base=self.multiplier,
            max=self.max_interval,
        )


class RestEndpoint:
    """Class to track a REST endpoint and its error count."""

    def __init__(self, address: str, provider: str = ""):
        self.address = address.rstrip("/")
        self.provider = provider
        self.error_count = 0

    def increment_error(self):
        """Increment the error count for this endpoint."""
        self.error_count += 1

    def __str__(self) -> str:
        return f"{self.address} (Provider: {self.provider}, Errors: {self.error_count})"


class EndpointPool:
    """A set of equivalent REST endpoints, preferring the ones with fewest errors."""

    def __init__(self, addresses: List[str], provider: str = ""):
        if not addresses:
            raise ConfigurationError("At least one REST endpoint is required")
        self.endpoints = [RestEndpoint(address, provider) for address in addresses]

    def pick(self) -> RestEndpoint:
        """
        Get the endpoint with the lowest error count.

        Ties keep configuration order, so a healthy primary endpoint is always
        tried first.
        """
        return min(self.endpoints, key=lambda e: e.error_count)

    def record_error(self, endpoint: RestEndpoint):
        endpoint.increment_error()
        logger.warning(f"Recorded error for endpoint {endpoint.address} (now has {endpoint.error_count} errors)")

    def report(self) -> List[Dict]:
        """
        Generate a report of all REST endpoints with their error counts.

        Returns:
            List of dictionaries with endpoint data, lowest error count first
        """
        sorted_endpoints = sorted(self.endpoints, key=lambda e: e.error_count)
        return [
            {
                "address": endpoint.address,
                "provider": endpoint.provider,
                "error_count": endpoint.error_count,
            }
            for endpoint in sorted_endpoints
        ]


class ResilientFetchClient:
    """
    Performs remote calls with exponential-backoff retry.

    Only NetworkError is retried. ParseError and every other exception surface on
    the first occurrence.
    """

    def __init__(self, session: aiohttp.ClientSession, policy: Optional[BackoffPolicy] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.session = session
        self.policy = policy or BackoffPolicy()
        self._sleep = sleep

    async def fetch(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        """
        Run operation until it succeeds or the backoff policy is exhausted.

        Args:
            operation: Zero-argument coroutine function performing one attempt
            description: What is being fetched, used in logs and error messages

        Returns:
            The operation's result

        Raises:
            NetworkError: the last network failure once retries are exhausted
        """
        attempts = 0

        def log_retry(retry_state):
            wait = retry_state.next_action.sleep if retry_state.next_action else 0
            logger.warning(
                f"{description} failed on attempt {retry_state.attempt_number}: "
                f"{retry_state.outcome.exception()}. Retrying in {wait:.1f}s"
            )

        retrying = AsyncRetrying(
            sleep=self._sleep,
            stop=self.policy.stop_condition(),
            wait=self.policy.wait_strategy(),
            retry=retry_if_exception_type(NetworkError),
            before_sleep=log_retry,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempts += 1
                    return await operation()
        except NetworkError as e:
            logger.error(f"Giving up on {description} after {attempts} attempts: {e}")
            raise NetworkError(f"{description} failed after {attempts} attempts: {e}") from e

    async def request_json(self, url: str, headers: Optional[Dict[str, str]] = None) -> Any:
        """
        Perform a single GET and decode the JSON body.

        Fractional numbers are decoded as Decimal so no value passes through a
        binary float.

        Raises:
            NetworkError: transport failure or non-200 status
            ParseError: the body is not valid JSON
        """
        logger.debug(f"GET {url}")
        try:
            async with self.session.get(url, headers=headers) as response:
                body = await response.text()
                if response.status != 200:
                    raise NetworkError(f"HTTP error {response.status} from {url}: {body[:200]}")
        except asyncio.TimeoutError as e:
            raise NetworkError(f"Timeout querying {url}") from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"Error querying {url}: {e}") from e

        try:
            return json.loads(body, parse_float=Decimal)
        except ValueError as e:
            raise ParseError(f"Invalid JSON from {url}: {e}") from e

    async def get_json(self, url: str, description: str, headers: Optional[Dict[str, str]] = None) -> Any:
        """GET a single URL with retry and return the decoded JSON."""
        return await self.fetch(lambda: self.request_json(url, headers), description)
