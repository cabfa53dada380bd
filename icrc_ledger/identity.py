"""
Principal and Account Identifier Helpers

Textual principals are the lowercase base32 encoding of crc32(raw) || raw,
split into dash-separated groups of five characters.

Account identifiers are hex(crc32(h) || h) where
h = sha224(b"\\x0aaccount-id" || principal || subaccount).
"""

import base64
import hashlib
import zlib
from typing import Optional, Union

SUBACCOUNT_LENGTH = 32
DEFAULT_SUBACCOUNT = bytes(SUBACCOUNT_LENGTH)
ACCOUNT_DOMAIN_SEPARATOR = b"\x0aaccount-id"

# Principals are at most 29 bytes
MAX_PRINCIPAL_LENGTH = 29

Blob = Union[bytes, bytearray, list, tuple, str]


def to_bytes(blob: Blob) -> bytes:
    """
    Coerce a wire blob to bytes.

    Accepts bytes, a sequence of ints, or a hex string.
    Raises ValueError or TypeError on anything else.
    """
    if isinstance(blob, (bytes, bytearray)):
        return bytes(blob)
    if isinstance(blob, str):
        return bytes.fromhex(blob)
    if isinstance(blob, (list, tuple)):
        return bytes(blob)
    raise TypeError(f"Unsupported blob type: {type(blob).__name__}")


def _crc32_prefix(data: bytes) -> bytes:
    return zlib.crc32(data).to_bytes(4, "big")


def principal_from_bytes(raw: bytes) -> str:
    """Encode raw principal bytes to the textual form."""
    if len(raw) > MAX_PRINCIPAL_LENGTH:
        raise ValueError(f"Principal too long: {len(raw)} bytes")
    encoded = base64.b32encode(_crc32_prefix(raw) + raw).decode("ascii").rstrip("=").lower()
    return "-".join(encoded[i:i + 5] for i in range(0, len(encoded), 5))


def principal_to_bytes(text: str) -> bytes:
    """Decode a textual principal, verifying its checksum."""
    if not isinstance(text, str) or not text:
        raise ValueError("Principal text must be a non-empty string")

    compact = text.replace("-", "").upper()
    padding = "=" * (-len(compact) % 8)
    try:
        decoded = base64.b32decode(compact + padding)
    except Exception as e:
        raise ValueError(f"Invalid principal text: {text}") from e

    if len(decoded) < 4:
        raise ValueError(f"Invalid principal text: {text}")

    checksum, raw = decoded[:4], decoded[4:]
    if _crc32_prefix(raw) != checksum:
        raise ValueError(f"Principal checksum mismatch: {text}")
    if principal_from_bytes(raw) != text:
        raise ValueError(f"Principal is not in canonical form: {text}")
    return raw


def decode_subaccount(blob: Blob) -> bytes:
    """Return the 32 subaccount bytes, or raise ValueError."""
    raw = to_bytes(blob)
    if len(raw) != SUBACCOUNT_LENGTH:
        raise ValueError(f"Subaccount must be {SUBACCOUNT_LENGTH} bytes, got {len(raw)}")
    return raw


def account_identifier(principal: str, subaccount: Optional[bytes] = None) -> str:
    """Derive the hex account identifier for a principal and optional subaccount."""
    sub = DEFAULT_SUBACCOUNT if subaccount is None else subaccount
    if len(sub) != SUBACCOUNT_LENGTH:
        raise ValueError(f"Subaccount must be {SUBACCOUNT_LENGTH} bytes, got {len(sub)}")

    digest = hashlib.sha224(ACCOUNT_DOMAIN_SEPARATOR + principal_to_bytes(principal) + sub).digest()
    return (_crc32_prefix(digest) + digest).hex()


def derive_account(principal: str, subaccount: Optional[Blob] = None) -> Optional[str]:
    """
    Derive an account identifier, never raising.

    A subaccount that does not decode falls back to the principal alone.
    Returns None when the principal itself is not decodable.
    """
    sub = None
    if subaccount is not None:
        try:
            sub = decode_subaccount(subaccount)
        except (ValueError, TypeError):
            sub = None

    try:
        return account_identifier(principal, sub)
    except ValueError:
        return None
