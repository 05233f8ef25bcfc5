"""
Airdrop error taxonomy.

Every failure that can abort an airdrop run derives from AirdropError so the
command-line entry point has a single place to catch and report it.
"""


class AirdropError(Exception):
    """Base class for all errors that abort an airdrop run."""


class NetworkError(AirdropError):
    """Transport failure or error status from a remote node or price index."""


class EmptyResponseError(AirdropError):
    """The remote side answered but returned no data where data was required."""


class ParseError(AirdropError):
    """A remote payload could not be interpreted (price, status, staking record)."""


class DecodeError(AirdropError):
    """A bech32 address failed to decode or re-encode."""


class ConfigurationError(AirdropError):
    """A required configuration value is missing or invalid."""


class StateMismatchError(AirdropError):
    """A delegation references a validator missing from the fetched validator set."""


class IncompleteResponseError(AirdropError):
    """The node capped a page that must hold the complete set."""
