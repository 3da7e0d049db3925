"""
Deterministic hashing utilities.

Signature checksums and configuration identities must be reproducible from
the stored fields alone.  This module provides the canonical encoding used
for both.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        # Trailing zeros from Numeric columns must not change the hash
        return str(obj.normalize())
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Keys are sorted, no whitespace, and Decimal/datetime/UUID values are
    encoded consistently.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict) -> str:
    """
    Compute SHA-256 hash of a payload.

    Returns:
        Hex-encoded SHA-256 hash (64 characters).
    """
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_signature(
    signature_text: str,
    signer_id: UUID,
    signed_at: datetime,
    instance_id: UUID,
) -> str:
    """
    Tamper-evidence checksum for a workflow signature.

    Covers the signed text, the signer, the signing instant and the
    workflow instance.  It proves the stored row was not edited; it is not a
    cryptographic signature and does not prove identity.
    """
    return hash_payload({
        "signature_text": signature_text,
        "signer_id": str(signer_id),
        "signed_at": signed_at.isoformat(),
        "instance_id": str(instance_id),
    })
