"""Tests for structural, key and descriptor similarity."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from conftest import FakeOracle
from semantic_mediator.cache.semantic_key import make_key
from semantic_mediator.cache.similarity import (
    DescriptorSimilarity,
    key_similarity,
    structural_similarity,
)
from semantic_mediator.clients.oracle import OracleError

if TYPE_CHECKING:
    from conftest import MakeDescriptor


class TestStructuralSimilarity:
    def test_identical(self) -> None:
        assert structural_similarity({"a": 1, "b": "x"}, {"a": 1, "b": "x"}) == 1.0

    def test_both_empty(self) -> None:
        assert structural_similarity({}, {}) == 1.0

    def test_disjoint_keys(self) -> None:
        assert structural_similarity({"a": 1}, {"b": 1}) == 0.0

    def test_partial_overlap(self) -> None:
        # overlap 1/3, shared key matches -> (1/3 + 1) / 2
        score = structural_similarity({"a": 1, "b": 2}, {"a": 1, "c": 3})
        assert score == pytest.approx((1 / 3 + 1) / 2)

    def test_value_mismatch(self) -> None:
        assert structural_similarity({"a": 1}, {"a": 2}) == pytest.approx(0.5)

    def test_type_mismatch_scores_zero(self) -> None:
        assert structural_similarity({"a": 1}, {"a": "1"}) == pytest.approx(0.5)

    def test_recurses_into_nested_mappings(self) -> None:
        a = {"schema": {"name": "string", "email": "string"}}
        b = {"schema": {"name": "string", "phone": "string"}}
        nested = (1 / 3 + 1) / 2
        assert structural_similarity(a, b) == pytest.approx((1 + nested) / 2)

    def test_non_mappings_compare_by_equality(self) -> None:
        assert structural_similarity("x", "x") == 1.0
        assert structural_similarity("x", "y") == 0.0
        assert structural_similarity({"a": 1}, "a") == 0.0


class TestKeySimilarity:
    def test_same_key_is_one(self, make_descriptor: MakeDescriptor) -> None:
        key = make_key(make_descriptor("crm"), make_descriptor("billing"))
        assert key_similarity(key, key) == 1.0

    def test_same_types_different_schema(self, make_descriptor: MakeDescriptor) -> None:
        tgt = make_descriptor("billing")
        a = make_key(make_descriptor("crm", fields={"name": "string", "email": "string"}), tgt)
        b = make_key(make_descriptor("crm", fields={"name": "string", "phone": "string"}), tgt)
        score = key_similarity(a, b)
        assert 0.3 < score < 1.0

    def test_different_types_lose_type_bonus(self, make_descriptor: MakeDescriptor) -> None:
        same = key_similarity(
            make_key(make_descriptor("crm"), make_descriptor("billing")),
            make_key(make_descriptor("crm"), make_descriptor("billing", fields={"x": "number"})),
        )
        different = key_similarity(
            make_key(make_descriptor("crm"), make_descriptor("billing")),
            make_key(make_descriptor("erp"), make_descriptor("ledger")),
        )
        assert different < 0.7
        assert same > different

    def test_unparseable_halves_compare_exactly(self) -> None:
        assert key_similarity("crm:x#billing:y", "crm:x#billing:z") == pytest.approx(0.65)
        assert key_similarity("crm:x#billing:y", "erp:q#ledger:z") == 0.0

    def test_bounded(self, make_descriptor: MakeDescriptor) -> None:
        a = make_key(make_descriptor("crm"), make_descriptor("billing"))
        b = make_key(make_descriptor("crm", fields={}), make_descriptor("billing", fields={}))
        assert 0.0 <= key_similarity(a, b) <= 1.0


class TestDescriptorSimilarity:
    async def test_parses_and_clamps(self, make_descriptor: MakeDescriptor) -> None:
        oracle = FakeOracle(["0.82", "1.7", "-3"])
        similarity = DescriptorSimilarity(oracle)
        a, b = make_descriptor("crm"), make_descriptor("customer")

        assert await similarity.score(a, b) == pytest.approx(0.82)
        assert await similarity.score(a, b) == 1.0
        assert await similarity.score(a, b) == 0.0

    async def test_uses_low_temperature_and_short_output(
        self, make_descriptor: MakeDescriptor
    ) -> None:
        oracle = FakeOracle(["0.5"])
        await DescriptorSimilarity(oracle).score(make_descriptor("crm"), make_descriptor("crm"))
        assert oracle.calls[0]["temperature"] == 0.1
        assert oracle.calls[0]["max_tokens"] == 10
        assert '"entity": "crm"' in oracle.calls[0]["prompt"]

    async def test_number_embedded_in_text(self, make_descriptor: MakeDescriptor) -> None:
        oracle = FakeOracle(["Similarity: 0.4"])
        score = await DescriptorSimilarity(oracle).score(
            make_descriptor("crm"), make_descriptor("erp")
        )
        assert score == pytest.approx(0.4)

    async def test_unparseable_returns_default(self, make_descriptor: MakeDescriptor) -> None:
        oracle = FakeOracle(["not a number", "nan"])
        similarity = DescriptorSimilarity(oracle)
        a, b = make_descriptor("crm"), make_descriptor("erp")
        assert await similarity.score(a, b) == pytest.approx(0.3)
        assert await similarity.score(a, b) == pytest.approx(0.3)

    async def test_oracle_failure_returns_default(self, make_descriptor: MakeDescriptor) -> None:
        oracle = FakeOracle(error=OracleError("gateway down"))
        score = await DescriptorSimilarity(oracle).score(
            make_descriptor("crm"), make_descriptor("erp")
        )
        assert score == pytest.approx(0.3)

    async def test_custom_default(self, make_descriptor: MakeDescriptor) -> None:
        oracle = FakeOracle(error=RuntimeError("boom"))
        similarity = DescriptorSimilarity(oracle, default=0.1)
        assert await similarity.score(make_descriptor(), make_descriptor()) == pytest.approx(0.1)

    async def test_context_score(self, make_descriptor: MakeDescriptor) -> None:
        oracle = FakeOracle(["0.9"])
        score = await DescriptorSimilarity(oracle).context_score(
            {"entity": "checkout"},
            {"source": make_descriptor("crm").to_document(), "target": {"entity": "billing"}},
        )
        assert score == pytest.approx(0.9)
        assert "checkout" in oracle.calls[0]["prompt"]
