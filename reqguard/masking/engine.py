"""Applies mask rules to field values."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog

from reqguard.exceptions import ExpressionError
from reqguard.masking.expression import ExpressionResolver
from reqguard.masking.rules import MaskRule, MaskType
from reqguard.masking.strategies import DEFAULT_STRATEGIES, MaskStrategy

logger = structlog.get_logger()


class FieldMaskEngine:
    """Masks one value per call according to a ``MaskRule``.

    Holds no per-value state, so one engine is shared across requests.
    """

    def __init__(
        self,
        resolver: ExpressionResolver | None = None,
        strategies: Mapping[MaskType, MaskStrategy] | None = None,
    ) -> None:
        self.resolver = resolver or ExpressionResolver()
        self._strategies: dict[MaskType, MaskStrategy] = dict(strategies or DEFAULT_STRATEGIES)

    def register_strategy(self, mask_type: MaskType, strategy: MaskStrategy) -> None:
        self._strategies[MaskType(mask_type)] = strategy

    def bypassed(self, rule: MaskRule, scope: Mapping[str, Any] | None = None) -> bool:
        """True only when the rule's expression resolves to exactly ``True``.

        Unresolvable expressions keep the value masked.
        """
        if not rule.expression or not rule.expression.strip():
            return False
        try:
            return self.resolver.resolve(rule.expression, scope) is True
        except ExpressionError as exc:
            logger.warning(
                "mask_expression_failed",
                expression=rule.expression,
                error=exc.message,
            )
        except Exception:
            logger.exception("mask_expression_error", expression=rule.expression)
        return False

    def apply(
        self, rule: MaskRule, value: str | None, scope: Mapping[str, Any] | None = None
    ) -> str | None:
        if value is None or value == "":
            return value
        if self.bypassed(rule, scope):
            return value
        strategy = self._strategies.get(rule.type, self._strategies[MaskType.CUSTOM])
        return strategy(value, rule)
