"""Pydantic schemas for the client/prospect and provider registries."""

import hashlib
import re
import unicodedata
from enum import Enum

from pydantic import BaseModel, Field, field_validator

TAG_SEPARATOR = ","


class ClientStatus(str, Enum):
    CLIENT = "CLIENT"
    PROSPECT = "PROSPECT"


class ClientIn(BaseModel):
    id: str | None = None
    name: str = Field(..., min_length=1, max_length=255)
    tax_id: str | None = None
    email: str | None = None
    address: str | None = None
    phone: str | None = None
    tags: list[str] = []
    notes: str | None = None
    status: ClientStatus = ClientStatus.PROSPECT

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Client name is required")
        return v


class ClientOut(BaseModel):
    id: str
    name: str
    tax_id: str | None = None
    email: str | None = None
    address: str | None = None
    phone: str | None = None
    tags: list[str] = []
    notes: str | None = None
    status: ClientStatus


def name_key(name: str) -> str:
    """ASCII slug of a contact name, hashed where the slug would lose letters.

    "Acme Corp" -> "acmecorp"; "Ñandú S.A." -> "nandusa"; names in other
    scripts get a digest so distinct names never share a key.
    """
    folded = unicodedata.normalize("NFKD", " ".join(name.split()).casefold())
    slug = re.sub(r"[^a-z0-9]", "", folded.encode("ascii", "ignore").decode())
    if slug and all(ch.isascii() or not ch.isalnum() for ch in folded):
        return slug
    digest = hashlib.sha1(folded.encode()).hexdigest()[:10]
    return f"{slug}_{digest}" if slug else digest


def client_id_for(account_id: str, name: str) -> str:
    """Stable id derived from the name so client and prospect rows line up."""
    return f"cli_{account_id[:8]}_{name_key(name)}"


def provider_id_for(account_id: str, name: str) -> str:
    return f"prov_{account_id[:8]}_{name_key(name)}"


def join_tags(tags: list[str]) -> str | None:
    cleaned = [t.strip() for t in tags if t and t.strip()]
    return TAG_SEPARATOR.join(cleaned) if cleaned else None


def split_tags(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [t.strip() for t in raw.split(TAG_SEPARATOR) if t.strip()]


# ── Providers ───────────────────────────────────────────────

class ProviderIn(BaseModel):
    id: str | None = None
    name: str = Field(..., min_length=1, max_length=255)
    tax_id: str | None = None
    email: str | None = None
    address: str | None = None
    phone: str | None = None
    category: str | None = None
    notes: str | None = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Provider name is required")
        return v


class ProviderOut(BaseModel):
    id: str
    name: str
    tax_id: str | None = None
    email: str | None = None
    address: str | None = None
    phone: str | None = None
    category: str | None = None
    notes: str | None = None

    model_config = {"from_attributes": True}
