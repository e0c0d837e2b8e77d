"""Ledger account address normalization.

Issuer accounts show up in two encodings: Substrate SS58 strings (what a
wallet displays) and 20-byte ``0x`` H160 hex (what the ledger records).
Everything is reduced to lowercase H160 hex before comparison:

* ``0x...`` input is lowercased as-is.
* SS58 input is base58-decoded. The address prefix is one byte when the
  first byte is below 64 and two bytes when it is in ``64..127``. The last two
  bytes are a checksum: the first two bytes of
  ``blake2b-512(b"SS58PRE" + prefix + account)``.
* A 20-byte account is already H160.
* A 32-byte AccountId32 maps to ``keccak256(account)[12:]``.

Anything that cannot be decoded is returned unchanged, so it only matches an
identical string.
"""

from __future__ import annotations

import hashlib

import base58
from eth_utils import keccak

H160_BYTES = 20
ACCOUNT_ID32_BYTES = 32

_SS58_CONTEXT = b"SS58PRE"
_SS58_CHECKSUM_BYTES = 2


class AddressFormatError(ValueError):
    """Raised when an SS58 address cannot be decoded."""


def _ss58_checksum(data: bytes) -> bytes:
    return hashlib.blake2b(_SS58_CONTEXT + data, digest_size=64).digest()[:_SS58_CHECKSUM_BYTES]


def _encode_ss58_prefix(network_id: int) -> bytes:
    if 0 <= network_id < 64:
        return bytes([network_id])
    if 64 <= network_id < 16384:
        first = ((network_id & 0b0000_0000_1111_1100) >> 2) | 0b0100_0000
        second = (network_id >> 8) | ((network_id & 0b0000_0000_0000_0011) << 6)
        return bytes([first, second])
    raise AddressFormatError(f"SS58 network id out of range: {network_id}")


def encode_ss58(account: bytes, network_id: int = 42) -> str:
    """Encode a 20- or 32-byte account as SS58 (default generic Substrate prefix 42)."""
    if len(account) not in (H160_BYTES, ACCOUNT_ID32_BYTES):
        raise AddressFormatError(f"unsupported account length: {len(account)}")
    body = _encode_ss58_prefix(network_id) + account
    return base58.b58encode(body + _ss58_checksum(body)).decode("ascii")


def decode_ss58(address: str) -> tuple[int, bytes]:
    """Decode an SS58 address into ``(network_id, account_bytes)``.

    Raises
    ------
    AddressFormatError
        On invalid base58, an unsupported prefix, or a checksum mismatch.
    """
    try:
        data = base58.b58decode(address.strip())
    except ValueError as exc:
        raise AddressFormatError(f"invalid base58 address: {address!r}") from exc
    if len(data) < 1 + _SS58_CHECKSUM_BYTES + 1:
        raise AddressFormatError("SS58 address is too short")

    first = data[0]
    if first < 64:
        prefix_len = 1
        network_id = first
    elif first < 128:
        prefix_len = 2
        second = data[1]
        lower = ((first << 2) | (second >> 6)) & 0xFF
        upper = second & 0b0011_1111
        network_id = lower | (upper << 8)
    else:
        raise AddressFormatError(f"unsupported SS58 prefix byte: {first}")

    body, checksum = data[:-_SS58_CHECKSUM_BYTES], data[-_SS58_CHECKSUM_BYTES:]
    account = body[prefix_len:]
    if not account:
        raise AddressFormatError("SS58 address has no account payload")
    if _ss58_checksum(body) != checksum:
        raise AddressFormatError("SS58 checksum mismatch")
    return network_id, account


def account_id_to_h160(account: bytes) -> str:
    """Map raw account bytes to lowercase ``0x`` H160 hex."""
    if len(account) == H160_BYTES:
        return "0x" + account.hex()
    if len(account) == ACCOUNT_ID32_BYTES:
        return "0x" + keccak(account)[12:].hex()
    raise AddressFormatError(f"unsupported account length: {len(account)}")


def normalize_account(address: str | None) -> str:
    """Reduce an account address to the comparable form described above."""
    value = (address or "").strip()
    if not value:
        return ""
    if value.startswith("0x"):
        return value.lower()
    try:
        _network_id, account = decode_ss58(value)
        return account_id_to_h160(account)
    except AddressFormatError:
        return value


def accounts_match(left: str | None, right: str | None) -> bool:
    """True when both addresses are present and normalize to the same account."""
    a = normalize_account(left)
    b = normalize_account(right)
    if not a or not b:
        return False
    return a.lower() == b.lower()
