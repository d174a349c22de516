"""Pydantic serialization boundary that masks annotated text fields.

    class Contact(SensitiveModel):
        name: str
        phone: Annotated[str, MaskRule(MaskType.MOBILE_PHONE)]
        email: Annotated[str | None, MaskRule(MaskType.EMAIL)] = None

    Contact(name="a", phone="13812345678").model_dump()
    # {"name": "a", "phone": "138****5678", "email": None}

The model instance keeps its real values; only the dumped output is masked.
"""

from __future__ import annotations

import types
import typing
from typing import Any, ClassVar

import structlog
from pydantic import BaseModel, SerializationInfo, SerializerFunctionWrapHandler, model_serializer

from reqguard.masking.engine import FieldMaskEngine
from reqguard.masking.rules import MaskRule

logger = structlog.get_logger()


def _is_text(annotation: Any) -> bool:
    if annotation is str:
        return True
    if typing.get_origin(annotation) in (typing.Union, types.UnionType):
        args = set(typing.get_args(annotation))
        return args == {str, type(None)}
    return False


def _engine_for(info: SerializationInfo) -> FieldMaskEngine:
    context = info.context or {}
    engine = context.get("mask_engine")
    if engine is not None:
        return engine
    from reqguard.app_context import get_app_context

    return get_app_context().mask_engine


class SensitiveModel(BaseModel):
    """Base model whose ``MaskRule``-annotated text fields are masked on dump.

    Pass ``context={"mask_engine": engine, "mask_scope": {...}}`` to
    ``model_dump`` to choose the engine and expression scope; otherwise the
    application context's engine and the current request scope are used.
    """

    mask_rules: ClassVar[dict[str, MaskRule]] = {}

    @classmethod
    def __pydantic_init_subclass__(cls, **kwargs: Any) -> None:
        super().__pydantic_init_subclass__(**kwargs)
        rules: dict[str, MaskRule] = {}
        for name, field in cls.model_fields.items():
            rule = next((m for m in field.metadata if isinstance(m, MaskRule)), None)
            if rule is None:
                continue
            if not _is_text(field.annotation):
                logger.debug("mask_rule_ignored", model=cls.__name__, field=name)
                continue
            rules[name] = rule
        cls.mask_rules = rules

    @model_serializer(mode="wrap")
    def serialize_masked(
        self, handler: SerializerFunctionWrapHandler, info: SerializationInfo
    ) -> Any:
        data = handler(self)
        rules = type(self).mask_rules
        if not rules or not isinstance(data, dict):
            return data

        engine = _engine_for(info)
        scope = (info.context or {}).get("mask_scope")
        fields = type(self).model_fields
        for name, rule in rules.items():
            key = name
            if info.by_alias and fields[name].serialization_alias:
                key = fields[name].serialization_alias
            elif info.by_alias and fields[name].alias:
                key = fields[name].alias
            if key in data:
                data[key] = engine.apply(rule, data[key], scope)
        return data
