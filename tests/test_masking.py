"""Field masking tests: rules, strategies, engine and the serialization boundary."""

from __future__ import annotations

from typing import Annotated
from unittest.mock import MagicMock

import pytest
from pydantic import Field

from reqguard.masking import FieldMaskEngine, MaskRule, MaskType, SensitiveModel
from reqguard.masking.expression import ExpressionResolver, bind_scope, reset_scope
from reqguard.masking.strategies import mask


class TestMaskRule:
    def test_defaults(self):
        rule = MaskRule()
        assert rule.type is MaskType.CUSTOM
        assert rule.mask_char == "*"
        assert rule.expression == ""

    def test_type_coerced_from_string(self):
        assert MaskRule("EMAIL").type is MaskType.EMAIL

    @pytest.mark.parametrize(
        "kwargs",
        [{"prefix_keep": -1}, {"suffix_keep": -2}, {"mask_char": ""}, {"mask_char": "**"}],
    )
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            MaskRule(**kwargs)


class TestMask:
    def test_custom_prefix_suffix(self):
        assert mask("1234567890", 3, 2) == "123*****90"

    def test_short_value_fully_masked(self):
        assert mask("12345", 3, 2) == "*****"
        assert mask("abc", 3, 2) == "***"

    def test_zero_keeps(self):
        assert mask("secret", 0, 0, "#") == "######"

    def test_empty(self):
        assert mask("", 1, 1) == ""

    def test_idempotent(self):
        once = mask("13812345678", 3, 4)
        assert mask(once, 3, 4) == once


@pytest.fixture
def engine():
    return FieldMaskEngine(ExpressionResolver())


class TestEngine:
    def test_mobile_phone(self, engine):
        assert engine.apply(MaskRule(MaskType.MOBILE_PHONE), "13812345678") == "138****5678"

    def test_id_card(self, engine):
        assert engine.apply(MaskRule(MaskType.ID_CARD), "110101199003077777") == "1101**********7777"

    def test_email(self, engine):
        assert engine.apply(MaskRule(MaskType.EMAIL), "alice@example.com") == "a****@example.com"

    def test_email_without_at(self, engine):
        assert engine.apply(MaskRule(MaskType.EMAIL), "alice") == "a****"

    def test_custom_uses_rule_keeps_and_char(self, engine):
        rule = MaskRule(prefix_keep=3, suffix_keep=2, mask_char="#")
        assert engine.apply(rule, "1234567890") == "123#####90"

    @pytest.mark.parametrize(
        "rule, value",
        [
            (MaskRule(MaskType.MOBILE_PHONE), "13812345678"),
            (MaskRule(MaskType.ID_CARD), "110101199003077777"),
            (MaskRule(MaskType.EMAIL), "alice@example.com"),
            (MaskRule(MaskType.EMAIL), "alice"),
            (MaskRule(MaskType.EMAIL, mask_char="#"), "bob@example.com"),
            (MaskRule(prefix_keep=3, suffix_keep=2), "1234567890"),
            (MaskRule(MaskType.MOBILE_PHONE, mask_char="x"), "13812345678"),
            (MaskRule(MaskType.ID_CARD), "1234"),
        ],
    )
    def test_masking_masked_value_is_stable(self, engine, rule, value):
        once = engine.apply(rule, value)
        assert once != value
        assert engine.apply(rule, once) == once

    def test_none_and_empty_pass_through(self, engine):
        rule = MaskRule(MaskType.MOBILE_PHONE)
        assert engine.apply(rule, None) is None
        assert engine.apply(rule, "") == ""

    def test_length_preserved(self, engine):
        for mask_type in MaskType:
            value = "x" * 17
            assert len(engine.apply(MaskRule(mask_type, 2, 2), value)) == 17

    def test_expression_true_bypasses(self, engine):
        rule = MaskRule(MaskType.MOBILE_PHONE, expression="${role == 'admin'}")
        assert engine.apply(rule, "13812345678", {"role": "admin"}) == "13812345678"
        assert engine.apply(rule, "13812345678", {"role": "user"}) == "138****5678"

    def test_truthy_non_boolean_does_not_bypass(self, engine):
        rule = MaskRule(MaskType.MOBILE_PHONE, expression="${'yes'}")
        assert engine.apply(rule, "13812345678") == "138****5678"

    def test_literal_expression_does_not_bypass(self, engine):
        rule = MaskRule(MaskType.MOBILE_PHONE, expression="true")
        assert engine.apply(rule, "13812345678") == "138****5678"

    def test_failing_expression_masks(self, engine):
        rule = MaskRule(MaskType.MOBILE_PHONE, expression="${undefined_name}")
        assert engine.apply(rule, "13812345678") == "138****5678"

    def test_unexpected_resolver_error_masks(self):
        resolver = MagicMock(spec=ExpressionResolver)
        resolver.resolve.side_effect = RuntimeError("boom")
        engine = FieldMaskEngine(resolver)
        rule = MaskRule(MaskType.ID_CARD, expression="${x}")
        assert engine.apply(rule, "110101199003077777") == "1101**********7777"

    def test_register_strategy(self, engine):
        engine.register_strategy(MaskType.EMAIL, lambda value, rule: "[hidden]")
        assert engine.apply(MaskRule(MaskType.EMAIL), "a@b.c") == "[hidden]"


class Contact(SensitiveModel):
    name: str
    phone: Annotated[str, MaskRule(MaskType.MOBILE_PHONE)]
    email: Annotated[str | None, MaskRule(MaskType.EMAIL)] = None
    badge: Annotated[int, MaskRule(prefix_keep=1)] = 0
    code: Annotated[
        str | None, MaskRule(prefix_keep=1, suffix_keep=1, expression="${params.get('raw') == '1'}")
    ] = None


class TestSensitiveModel:
    def test_rule_table_holds_only_text_fields(self):
        assert set(Contact.mask_rules) == {"phone", "email", "code"}

    def test_dump_masks_without_mutating(self, engine):
        contact = Contact(name="Bob", phone="13812345678", email="bob@example.com", badge=12345)
        data = contact.model_dump(context={"mask_engine": engine})
        assert data == {
            "name": "Bob",
            "phone": "138****5678",
            "email": "b**@example.com",
            "badge": 12345,
            "code": None,
        }
        assert contact.phone == "13812345678"

    def test_json_dump_masks(self, engine):
        contact = Contact(name="Bob", phone="13812345678")
        assert '"138****5678"' in contact.model_dump_json(context={"mask_engine": engine})

    def test_explicit_scope_enables_bypass(self, engine):
        contact = Contact(name="Bob", phone="13812345678", code="ABCDEF")
        data = contact.model_dump(
            context={"mask_engine": engine, "mask_scope": {"params": {"raw": "1"}}}
        )
        assert data["code"] == "ABCDEF"
        assert data["phone"] == "138****5678"

    def test_request_scope_from_context_var(self):
        contact = Contact(name="Bob", phone="13812345678", code="ABCDEF")
        token = bind_scope({"params": {"raw": "1"}})
        try:
            data = contact.model_dump()
        finally:
            reset_scope(token)
        assert data["code"] == "ABCDEF"
        assert contact.model_dump(context={"mask_scope": {"params": {}}})["code"] == "A****F"

    def test_nested_models_masked(self, engine):
        class Book(SensitiveModel):
            owner: Contact

        book = Book(owner=Contact(name="Bob", phone="13812345678"))
        assert book.model_dump(context={"mask_engine": engine})["owner"]["phone"] == "138****5678"

    def test_alias_key_masked(self, engine):
        class Aliased(SensitiveModel):
            phone_number: Annotated[str, Field(alias="phoneNumber"), MaskRule(MaskType.MOBILE_PHONE)]

        item = Aliased(phoneNumber="13812345678")
        assert item.model_dump(by_alias=True, context={"mask_engine": engine}) == {"phoneNumber": "138****5678"}
