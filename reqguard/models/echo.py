"""Pydantic models for the echo and contact preview endpoints."""

from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, Field

from reqguard.masking.rules import MaskRule, MaskType
from reqguard.masking.serialization import SensitiveModel


class EchoResponse(BaseModel):
    """What the handler saw after the guard pipeline ran."""

    method: str
    path: str
    query: str | None = None
    params: dict[str, list[str]] = Field(default_factory=dict)
    headers: dict[str, str] = Field(default_factory=dict)
    client_ip: str | None = None
    fingerprint: str
    body: str | None = None
    body_cached: bool = False
    body_replayed: bool = False


class ContactCard(SensitiveModel):
    """Contact details; phone, email, ID card and internal code are masked on output."""

    name: str = Field(..., min_length=1, max_length=255)
    phone: Annotated[str, Field(max_length=32), MaskRule(MaskType.MOBILE_PHONE)]
    email: Annotated[str | None, Field(max_length=320), MaskRule(MaskType.EMAIL)] = None
    id_card: Annotated[str | None, Field(max_length=64), MaskRule(MaskType.ID_CARD)] = None
    internal_code: Annotated[
        str | None,
        MaskRule(
            prefix_keep=2,
            suffix_keep=2,
            mask_char="#",
            expression="${env.get('GUARD_UNMASK_INTERNAL_CODES') == '1'}",
        ),
    ] = None
    age: int | None = None
