"""Bech32 address conversion between chain prefixes."""

from typing import Tuple

import bech32

from airdrop_errors import DecodeError

# Account addresses are 20 bytes; module and ICA accounts are 32.
VALID_PAYLOAD_LENGTHS = (20, 32)


def decode(address: str) -> Tuple[str, bytes]:
    """
    Decode a bech32 address into its prefix and payload bytes.

    All-uppercase addresses are accepted; the prefix comes back lowercase.

    Raises:
        DecodeError: on checksum, charset or padding violations, or a payload
            that is not 20 or 32 bytes long.
    """
    hrp, words = bech32.bech32_decode(address)
    if hrp is None or words is None:
        raise DecodeError(f"Invalid bech32 address {address!r}")

    payload = bech32.convertbits(words, 5, 8, False)
    if payload is None:
        raise DecodeError(f"Invalid bech32 padding in address {address!r}")
    if len(payload) not in VALID_PAYLOAD_LENGTHS:
        raise DecodeError(f"Unexpected payload length {len(payload)} in address {address!r}")

    return hrp, bytes(payload)


def encode(prefix: str, payload: bytes) -> str:
    """
    Encode payload bytes under the given bech32 prefix.

    Raises:
        DecodeError: if the result would not decode back to prefix and payload,
            e.g. an empty or uppercase prefix, one with characters outside
            printable ASCII, or one too long for the 90 character limit.
    """
    if not isinstance(prefix, str) or not prefix:
        raise DecodeError(f"Invalid bech32 prefix {prefix!r}")

    words = bech32.convertbits(payload, 8, 5)
    if words is None:
        raise DecodeError(f"Error converting {len(payload)} bytes to bech32 words")

    address = bech32.bech32_encode(prefix, words)
    if bech32.bech32_decode(address) != (prefix, words):
        raise DecodeError(f"Prefix {prefix!r} does not produce a valid bech32 address")
    return address


def check_prefix(prefix: str) -> str:
    """Fail with DecodeError unless prefix can carry the longest accepted payload."""
    encode(prefix, bytes(max(VALID_PAYLOAD_LENGTHS)))
    return prefix


def convert(address: str, target_prefix: str) -> str:
    """
    Re-encode the payload of a bech32 address under target_prefix.

    The result is always canonical lowercase bech32, so an all-uppercase source
    converted under its own prefix comes back as its lowercase form.
    """
    _, payload = decode(address)
    return encode(target_prefix, payload)
