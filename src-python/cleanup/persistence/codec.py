"""JSON encoding of shield lists for rule storage."""

from __future__ import annotations

from pydantic import TypeAdapter, ValidationError

from cleanup.exceptions import RuleDecodeError
from models.schemas import CleanupShield

_SHIELD_LIST = TypeAdapter(list[CleanupShield])


def encode_shields(shields: list[CleanupShield]) -> str:
    """Serialize *shields* to a JSON array string."""
    return _SHIELD_LIST.dump_json(shields).decode("utf-8")


def decode_shields(payload: str | bytes | None) -> list[CleanupShield]:
    """Parse a stored JSON array back into shields.

    Raises:
        RuleDecodeError: if the payload is not valid JSON or any shield
            fails validation.
    """
    if payload is None:
        return []
    try:
        return _SHIELD_LIST.validate_json(payload)
    except ValidationError as exc:
        raise RuleDecodeError(
            "Stored rule payload could not be decoded",
            {"errors": exc.error_count()},
        ) from exc
