"""
Transaction metadata helpers.

- CIP-25 (label 721) provenance record attached when a batch is minted
- CIP-20 style (label 674) status record attached to each status transfer

Every metadata string is limited to 64 bytes by the ledger, longer strings
are chunked into lists.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pycardano import AlonzoMetadata, AuxiliaryData, Metadata

from minter.core.errors import InvalidRequestError, MetadataTooLarge

MAX_STRING_BYTES = 64


def split_string(text: str, max_bytes: int = MAX_STRING_BYTES) -> List[str]:
    """
    Split text into chunks of at most max_bytes UTF-8 bytes.

    Multi-byte characters are never cut in half.
    """
    chunks = []
    current = ""
    for char in text:
        if len((current + char).encode("utf-8")) > max_bytes:
            chunks.append(current)
            current = char
        else:
            current += char
    if current or not chunks:
        chunks.append(current)
    return chunks


def to_metadatum(value: Any) -> Any:
    """
    Convert a JSON-like value into a ledger metadatum.

    Long strings become lists of chunks; floats and booleans become strings;
    None values are dropped from maps.
    """
    if isinstance(value, dict):
        return {
            (k if isinstance(k, int) else str(k)): to_metadatum(v)
            for k, v in value.items()
            if v is not None
        }
    if isinstance(value, (list, tuple)):
        return [to_metadatum(item) for item in value if item is not None]
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return value
    if isinstance(value, bytes):
        return value if len(value) <= MAX_STRING_BYTES else [
            value[i:i + MAX_STRING_BYTES] for i in range(0, len(value), MAX_STRING_BYTES)
        ]
    text = value if isinstance(value, str) else str(value)
    if len(text.encode("utf-8")) <= MAX_STRING_BYTES:
        return text
    return split_string(text)


def build_mint_metadata(
    policy_id: str,
    token_name: bytes,
    record: Dict[str, Any],
    label: int = 721,
) -> Dict[int, Any]:
    """
    Build the CIP-25 provenance payload for a newly minted batch token.

    Args:
        policy_id: Hex policy id
        token_name: Asset name bytes
        record: Provenance record (farmer, region, specifications, ...)
        label: Metadata label

    Returns:
        {label: {policy_id: {asset_name: record}, "version": "1.0"}}
    """
    if not record:
        raise InvalidRequestError("Mint metadata is required")

    try:
        asset_name = token_name.decode("utf-8")
    except UnicodeDecodeError:
        asset_name = token_name.hex()

    body = dict(record)
    body.setdefault("name", asset_name)

    return {
        label: to_metadatum({
            policy_id: {asset_name: body},
            "version": "1.0",
        })
    }


def build_status_metadata(
    asset_unit: str,
    status_record: Dict[str, Any],
    label: int = 674,
    now: Optional[datetime] = None,
) -> Dict[int, Any]:
    """
    Build the status update payload.

    Args:
        asset_unit: Unit the status applies to
        status_record: Must contain "status"; description, note, timestamp optional
        label: Metadata label
        now: Timestamp used when the record carries none

    Returns:
        {label: {"msg": [...], "policy_id": ..., "asset_name": ..., "status": ..., ...}}
    """
    status = (status_record or {}).get("status")
    if not status:
        raise InvalidRequestError("Status is required")

    timestamp = status_record.get("timestamp") or (now or datetime.now(timezone.utc)).isoformat()

    body = {
        "msg": split_string(f"Status update: {status}"),
        "policy_id": asset_unit[:56],
        "asset_name": asset_unit[56:],
        "status": status,
        "description": status_record.get("description") or "",
        "note": status_record.get("note") or "",
        "timestamp": timestamp,
    }
    for key, value in status_record.items():
        if key not in body:
            body[key] = value

    return {label: to_metadatum(body)}


def join_metadatum(value: Any) -> Any:
    """Reverse string chunking when reading metadata back from the chain."""
    if isinstance(value, list) and value and all(isinstance(v, str) for v in value):
        return "".join(value)
    return value


def to_auxiliary_data(payload: Dict[int, Any], max_bytes: int) -> AuxiliaryData:
    """
    Wrap a payload as auxiliary data, enforcing the size ceiling.

    Raises:
        MetadataTooLarge: If the serialized metadata exceeds max_bytes
        InvalidRequestError: If the payload is not valid ledger metadata
    """
    try:
        metadata = Metadata(payload)
    except Exception as e:
        raise InvalidRequestError(f"Metadata is not valid ledger metadata: {e}")

    size = len(metadata.to_cbor())
    if size > max_bytes:
        raise MetadataTooLarge(size, max_bytes)

    return AuxiliaryData(AlonzoMetadata(metadata=metadata))


def status_unit(body: Dict[str, Any]) -> Optional[str]:
    """Asset unit a status record read from the chain refers to, if it names one."""
    policy_id = join_metadatum(body.get("policy_id"))
    if policy_id is not None:
        return policy_id + (join_metadatum(body.get("asset_name")) or "")
    return join_metadatum(body.get("unit"))
