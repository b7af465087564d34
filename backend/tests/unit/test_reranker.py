"""Unit tests for LLM reranking of retrieval candidates."""

import pytest

from fakes import FakeChatProvider
from knowledge_core.application.services.reranker import (
    LLMReranker,
    build_rerank_prompt,
    parse_scores,
)
from knowledge_core.domain.entities import RetrievalResult
from knowledge_core.domain.exceptions import ProviderError


def _candidates(*contents: str) -> list[RetrievalResult]:
    return [
        RetrievalResult(id=f"c{i}", content=content, score=1.0 - i * 0.1)
        for i, content in enumerate(contents)
    ]


class TestParseScores:
    def test_scores_are_normalized(self):
        assert parse_scores("[8, 5, 10, 0]", 4) == [0.8, 0.5, 1.0, 0.0]

    def test_array_is_found_inside_prose(self):
        assert parse_scores("Sure! Scores: [7, 3]\nHope that helps.", 2) == [0.7, 0.3]

    def test_out_of_range_scores_are_clamped(self):
        assert parse_scores("[12, 4.5]", 2) == [1.0, 0.45]

    @pytest.mark.parametrize(
        "content",
        ["no numbers here", "[1, 2]", "[1, 2, 3, 4]", "[1,, 2, 3]"],
    )
    def test_unusable_answers(self, content):
        assert parse_scores(content, 3) is None


def test_prompt_numbers_documents_and_truncates_snippets():
    long_text = "x" * 400
    prompt = build_rerank_prompt("how do hooks work", _candidates("short doc", long_text))

    assert 'Query: "how do hooks work"' in prompt
    assert "Document 1:\nshort doc\n" in prompt
    assert f"Document 2:\n{'x' * 300}...\n" in prompt
    assert "x" * 301 not in prompt
    assert prompt.endswith("Scores:")


class TestLLMReranker:
    async def test_reorders_by_llm_score(self):
        chat = FakeChatProvider("[2, 9, 5]")
        reranker = LLMReranker(chat, model="test/model")

        results = await reranker.rerank("hooks", _candidates("a", "b", "c"), top_k=2)

        assert [r.id for r in results] == ["c1", "c2"]
        assert [r.score for r in results] == [0.9, 0.5]
        call = chat.calls[0]
        assert call["model"] == "test/model"
        assert call["temperature"] == 0.0
        assert [m.role for m in call["messages"]] == ["system", "user"]

    async def test_ties_keep_incoming_order(self):
        reranker = LLMReranker(FakeChatProvider("[5, 5, 5]"))

        results = await reranker.rerank("q", _candidates("a", "b", "c"), top_k=2)

        assert [r.id for r in results] == ["c0", "c1"]

    async def test_provider_failure_keeps_hybrid_order(self):
        chat = FakeChatProvider(ProviderError("openrouter", "rate limited", 429))

        results = await LLMReranker(chat).rerank("q", _candidates("a", "b", "c"), top_k=2)

        assert [r.id for r in results] == ["c0", "c1"]
        assert [r.score for r in results] == [1.0, 0.9]

    async def test_unparseable_answer_keeps_hybrid_order(self):
        chat = FakeChatProvider("I think the second one is best.")

        results = await LLMReranker(chat).rerank("q", _candidates("a", "b", "c"), top_k=2)

        assert [r.id for r in results] == ["c0", "c1"]

    async def test_few_candidates_skip_the_llm(self):
        chat = FakeChatProvider("[1]")

        results = await LLMReranker(chat).rerank("q", _candidates("a", "b"), top_k=5)

        assert [r.id for r in results] == ["c0", "c1"]
        assert chat.calls == []

    async def test_no_candidates(self):
        assert await LLMReranker(FakeChatProvider()).rerank("q", [], top_k=5) == []
