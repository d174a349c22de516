"""Declarative per-field mask rules."""

from __future__ import annotations

import enum
from dataclasses import dataclass

DEFAULT_MASK_CHAR = "*"


class MaskType(str, enum.Enum):
    MOBILE_PHONE = "MOBILE_PHONE"
    EMAIL = "EMAIL"
    ID_CARD = "ID_CARD"
    CUSTOM = "CUSTOM"


@dataclass(frozen=True)
class MaskRule:
    """How a text field is masked when serialized.

    Attach with ``typing.Annotated``::

        phone: Annotated[str, MaskRule(MaskType.MOBILE_PHONE)]
        code: Annotated[str, MaskRule(prefix_keep=3, suffix_keep=2)]

    ``prefix_keep``/``suffix_keep`` apply to ``CUSTOM``; the other types use
    fixed keep lengths. ``expression`` is a bypass condition: when it resolves
    to ``True`` the value is serialized unmasked.
    """

    type: MaskType = MaskType.CUSTOM
    prefix_keep: int = 0
    suffix_keep: int = 0
    mask_char: str = DEFAULT_MASK_CHAR
    expression: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.type, MaskType):
            object.__setattr__(self, "type", MaskType(self.type))
        if self.prefix_keep < 0 or self.suffix_keep < 0:
            raise ValueError("prefix_keep and suffix_keep must be >= 0")
        if len(self.mask_char) != 1:
            raise ValueError("mask_char must be a single character")
