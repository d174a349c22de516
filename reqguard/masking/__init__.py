"""Declarative field masking for serialized output."""

from reqguard.masking.engine import FieldMaskEngine
from reqguard.masking.expression import ExpressionResolver
from reqguard.masking.rules import MaskRule, MaskType
from reqguard.masking.serialization import SensitiveModel

__all__ = [
    "ExpressionResolver",
    "FieldMaskEngine",
    "MaskRule",
    "MaskType",
    "SensitiveModel",
]
