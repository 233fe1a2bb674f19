"""
Public identifiers for stored rows.

Integer primary keys never leave the service. Each row also carries a
time-ordered UUIDv7, exposed as ``<prefix>_<crockford base32>``, e.g.
``ntf_01hgw2bbg0000000000000000`` for a Notification.
"""

import re
import uuid as uuid_module
from typing import ClassVar, Optional

import base32_crockford
from sqlalchemy import Column, LargeBinary, TypeDecorator
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from uuid_extensions import uuid7


GUID_ENCODED_LENGTH = 26

# Crockford Base32 alphabet (no I, L, O, U)
ENCODED_PATTERN = re.compile(r"^[0-9A-HJKMNP-TV-Z]{26}$", re.IGNORECASE)


def _to_uuid(value) -> uuid_module.UUID:
    if isinstance(value, uuid_module.UUID):
        return value
    if isinstance(value, bytes):
        return uuid_module.UUID(bytes=value)
    return uuid_module.UUID(str(value))


def encode_uuid(value: uuid_module.UUID) -> str:
    """Lowercase, zero-padded Crockford Base32 form of a UUID."""
    return base32_crockford.encode(value.int).zfill(GUID_ENCODED_LENGTH).lower()


class UUIDType(TypeDecorator):
    """UUID column: native on PostgreSQL, 16 raw bytes on SQLite."""

    impl = LargeBinary
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(LargeBinary(16))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = _to_uuid(value)
        return value if dialect.name == "postgresql" else value.bytes

    def process_result_value(self, value, dialect):
        return None if value is None else _to_uuid(value)


class GuidMixin:
    """
    Adds the ``uuid`` column and the ``guid`` / ``parse_guid`` pair.

    Subclasses set GUID_PREFIX (``rcp``, ``ntf``).
    """

    GUID_PREFIX: ClassVar[str]

    uuid = Column(UUIDType(), nullable=False, unique=True, index=True, default=uuid7)

    @property
    def guid(self) -> Optional[str]:
        # uuid is assigned by the column default, so None until flush
        if self.uuid is None:
            return None
        return f"{self.GUID_PREFIX}_{encode_uuid(_to_uuid(self.uuid))}"

    @classmethod
    def parse_guid(cls, guid: str) -> uuid_module.UUID:
        """
        Decode a guid produced by ``guid`` back to its UUID.

        The prefix must match this model; the encoded part is
        case-insensitive. Raises ValueError for anything malformed.
        """
        prefix, sep, encoded = (guid or "").partition("_")
        if not sep or prefix.lower() != cls.GUID_PREFIX:
            raise ValueError(f"not a {cls.__name__} guid: {guid!r}")
        if len(encoded) != GUID_ENCODED_LENGTH:
            raise ValueError(
                f"guid body must be {GUID_ENCODED_LENGTH} characters, got {len(encoded)}"
            )
        if not ENCODED_PATTERN.match(encoded):
            raise ValueError(f"guid {guid!r} is not Crockford Base32")
        try:
            number = base32_crockford.decode(encoded.upper())
            return uuid_module.UUID(int=number)
        except ValueError as e:
            raise ValueError(f"malformed guid {guid!r}: {e}") from e
