"""Card data models."""

from __future__ import annotations

import hashlib
import json
import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from cardvault.models.crypto.exceptions import MalformedInput

PAYLOAD_SCHEMA = 1


def _now() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return str(uuid.uuid4())


def _as_utc(value: datetime) -> datetime:
    """Naive timestamps are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class CardCategory(str, Enum):
    """Kinds of card a vault can hold."""

    CREDIT = "credit"
    DEBIT = "debit"
    LOYALTY = "loyalty"
    ID = "id"
    OTHER = "other"


class CardImage(BaseModel):
    """Photo attached to a card.

    Attributes:
        id: Stable identifier, unique within the card
        name: Display name
        mime_type: Image MIME type
        data: Raw image bytes
        added_at: When the image was attached
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    name: str = "Card Image"
    mime_type: str = "image/jpeg"
    data: bytes = Field(repr=False)
    added_at: datetime = Field(default_factory=_now)

    @field_validator("added_at")
    @classmethod
    def normalize_added_at(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def digest(self) -> str:
        return hashlib.sha256(self.data).hexdigest()


class ImageRef(BaseModel):
    """Image metadata carried inside an encrypted card payload."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    mime_type: str
    size: int
    sha256: str
    added_at: datetime

    @field_validator("added_at")
    @classmethod
    def normalize_added_at(cls, v: datetime) -> datetime:
        return _as_utc(v)


class Card(BaseModel):
    """Plaintext card record.

    Only ever exists in process memory; the persisted form is the encrypted
    record produced by the crypto engine.

    Attributes:
        id: Stable unique identifier (also addresses the remote record)
        category: Card category
        nickname: User-facing label
        number: Full card number
        last4: Last four digits, derived from ``number`` when omitted
        expiry_date: Expiry date as entered (e.g. ``"08/29"``)
        issue_date: Issue date as entered
        cardholder_name: Name printed on the card
        cvv: Security code
        notes: Free-form notes
        images: Attached photos
        added_at: Creation timestamp
        updated_at: Last update timestamp
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    category: CardCategory = CardCategory.OTHER
    nickname: str
    number: str | None = Field(default=None, repr=False)
    last4: str | None = None
    expiry_date: str | None = None
    issue_date: str | None = None
    cardholder_name: str | None = None
    cvv: str | None = Field(default=None, repr=False)
    notes: str | None = Field(default=None, repr=False)
    images: tuple[CardImage, ...] = ()
    added_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @field_validator("added_at", "updated_at")
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @model_validator(mode="before")
    @classmethod
    def _fill_last4(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("last4") and data.get("number"):
            digits = "".join(ch for ch in str(data["number"]) if ch.isdigit())
            if len(digits) >= 4:
                data = {**data, "last4": digits[-4:]}
        return data

    def image_refs(self) -> list[ImageRef]:
        return [
            ImageRef(
                id=image.id,
                name=image.name,
                mime_type=image.mime_type,
                size=image.size,
                sha256=image.digest,
                added_at=image.added_at,
            )
            for image in self.images
        ]

    def to_payload(self) -> bytes:
        """Serialize the card without image bytes into canonical JSON.

        Identical cards always serialize to identical bytes.
        """
        body = {
            "schema": PAYLOAD_SCHEMA,
            "card": self.model_dump(mode="json", exclude={"images"}),
            "images": [ref.model_dump(mode="json") for ref in self.image_refs()],
        }
        return json.dumps(body, sort_keys=True, separators=(",", ":")).encode("utf-8")


def parse_payload(raw: bytes) -> tuple[dict[str, Any], list[ImageRef]]:
    """Split a decrypted payload into card fields and image references.

    Raises:
        MalformedInput: If the payload is not a card payload.
    """
    try:
        body = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedInput(f"Card payload is not valid JSON: {e}") from e

    if not isinstance(body, dict) or body.get("schema") != PAYLOAD_SCHEMA:
        raise MalformedInput("Unsupported card payload schema")
    fields = body.get("card")
    if not isinstance(fields, dict):
        raise MalformedInput("Card payload has no card object")

    try:
        refs = [ImageRef.model_validate(item) for item in body.get("images", [])]
    except (ValidationError, TypeError) as e:
        raise MalformedInput("Invalid image reference in card payload") from e
    return fields, refs


def build_card(fields: dict[str, Any], images: list[CardImage]) -> Card:
    """Assemble a card from decrypted payload fields and decrypted images."""
    try:
        return Card.model_validate({**fields, "images": tuple(images)})
    except ValidationError as e:
        raise MalformedInput(f"Invalid card payload ({e.error_count()} errors)") from e
