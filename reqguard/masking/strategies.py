"""Masking strategies, one per ``MaskType``."""

from __future__ import annotations

from collections.abc import Callable

from reqguard.masking.rules import DEFAULT_MASK_CHAR, MaskRule, MaskType

MaskStrategy = Callable[[str, MaskRule], str]

PHONE_KEEP = (3, 4)
ID_CARD_KEEP = (4, 4)
EMAIL_LOCAL_KEEP = 1


def mask(value: str, prefix_keep: int, suffix_keep: int, mask_char: str = DEFAULT_MASK_CHAR) -> str:
    """Keep *prefix_keep* leading and *suffix_keep* trailing characters, mask the rest.

    A value no longer than ``prefix_keep + suffix_keep`` is masked entirely.
    Each hidden character becomes one *mask_char*, so the length is preserved
    and masking an already-masked value changes nothing.
    """
    if not value:
        return value
    length = len(value)
    if length <= prefix_keep + suffix_keep:
        return mask_char * length
    hidden = length - prefix_keep - suffix_keep
    return value[:prefix_keep] + mask_char * hidden + value[length - suffix_keep:]


def mask_mobile_phone(value: str, rule: MaskRule) -> str:
    return mask(value, *PHONE_KEEP, rule.mask_char)


def mask_id_card(value: str, rule: MaskRule) -> str:
    return mask(value, *ID_CARD_KEEP, rule.mask_char)


def mask_email(value: str, rule: MaskRule) -> str:
    """Mask the local part, keep the domain (``alice@x.io`` -> ``a****@x.io``)."""
    local, at, domain = value.rpartition("@")
    if not at:
        return mask(value, EMAIL_LOCAL_KEEP, 0, rule.mask_char)
    return mask(local, EMAIL_LOCAL_KEEP, 0, rule.mask_char) + at + domain


def mask_custom(value: str, rule: MaskRule) -> str:
    return mask(value, rule.prefix_keep, rule.suffix_keep, rule.mask_char)


DEFAULT_STRATEGIES: dict[MaskType, MaskStrategy] = {
    MaskType.MOBILE_PHONE: mask_mobile_phone,
    MaskType.EMAIL: mask_email,
    MaskType.ID_CARD: mask_id_card,
    MaskType.CUSTOM: mask_custom,
}
