"""
Airdrop configuration.

Settings are read from a TOML file, e.g.:

    address_prefix = "pica"
    api_server_address = ["https://rest.cosmos.directory/cosmoshub"]
    rpc_server_address = "https://rpc.cosmos.directory/cosmoshub"
    price_source_api = "https://api.coingecko.com/api/v3/simple/price?ids="
    coin_id = "cosmos"
    airdrop_token_denom = "ppica"
    minimum_staking_tokens_worth = 20
    airdrop_distribution = 1000000000

    [backoff]
    max_elapsed_time = 600

Staking state is read over the REST gateway only, so a grpc_server_address key
from older config files is ignored with a warning like any other unknown key.
"""

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import address_codec
from airdrop_errors import ConfigurationError, DecodeError
from resilient_fetch import BackoffPolicy

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30


@dataclass
class AirdropConfig:
    """Settings for one airdrop run."""

    price_source_api: Optional[str] = None
    coin_id: Optional[str] = None
    airdrop_token_denom: Optional[str] = None
    minimum_staking_tokens_worth: Optional[int] = None
    airdrop_distribution: Optional[int] = None
    address_prefix: Optional[str] = None
    api_server_address: List[str] = field(default_factory=list)
    rpc_server_address: Optional[str] = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AirdropConfig":
        """Build a config from a parsed TOML document."""
        known = {f for f in cls.__dataclass_fields__}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(sorted(unknown))}")

        values = {key: value for key, value in data.items() if key in known}

        backoff = values.pop("backoff", None)
        if backoff is not None:
            if not isinstance(backoff, dict):
                raise ConfigurationError("backoff must be a table")
            values["backoff"] = BackoffPolicy.from_dict(backoff)

        api_server_address = values.pop("api_server_address", None)
        if api_server_address is not None:
            values["api_server_address"] = _as_list(api_server_address, "api_server_address")

        return cls(**values)

    def validate(self) -> "AirdropConfig":
        """
        Check that every setting a run needs is present and well formed.

        Raises:
            ConfigurationError: naming every missing or invalid setting
        """
        required = {
            "price_source_api": self.price_source_api,
            "coin_id": self.coin_id,
            "airdrop_token_denom": self.airdrop_token_denom,
            "minimum_staking_tokens_worth": self.minimum_staking_tokens_worth,
            "airdrop_distribution": self.airdrop_distribution,
            "address_prefix": self.address_prefix,
            "api_server_address": self.api_server_address,
            "rpc_server_address": self.rpc_server_address,
        }
        missing = [name for name, value in required.items() if value is None or value == "" or value == []]
        if missing:
            raise ConfigurationError(f"Missing required config values: {', '.join(missing)}")

        for name in ("minimum_staking_tokens_worth", "airdrop_distribution"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ConfigurationError(f"{name} must be a non-negative integer, got {value!r}")

        try:
            address_codec.check_prefix(self.address_prefix)
        except DecodeError as e:
            raise ConfigurationError(f"address_prefix {self.address_prefix!r} is not a usable bech32 prefix") from e

        if self.request_timeout <= 0:
            raise ConfigurationError(f"request_timeout must be positive, got {self.request_timeout!r}")

        return self


def _as_list(value: Union[str, List[str]], name: str) -> List[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return value
    raise ConfigurationError(f"{name} must be a string or a list of strings")


def load_config(config_path: Union[str, Path]) -> AirdropConfig:
    """
    Load and validate the TOML config file.

    Raises:
        ConfigurationError: if the file is missing, unparsable or incomplete
    """
    path = Path(config_path)
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Config file {path} not found") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e

    try:
        config = AirdropConfig.from_dict(data)
    except TypeError as e:
        raise ConfigurationError(f"Invalid config in {path}: {e}") from e

    logger.info(f"Loaded configuration from {path}")
    return config.validate()
