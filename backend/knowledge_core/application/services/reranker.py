"""LLM reranking: a chat model scores how relevant each candidate is to the query.

Every candidate is shown to the model as its first 300 characters; the model
answers with a JSON array of 0-10 scores, which become result scores in [0, 1].
When the call or the parsing fails the candidates keep their incoming order.
"""

import json
import logging
import re
from dataclasses import replace

from knowledge_core.application.interfaces.chat_provider import ChatProvider
from knowledge_core.domain.entities.chat_message import ChatMessage
from knowledge_core.domain.entities.retrieval import RetrievalResult
from knowledge_core.domain.exceptions import ProviderError

logger = logging.getLogger(__name__)

DEFAULT_RERANK_MODEL = "meta-llama/llama-3.1-8b-instruct"
SNIPPET_CHARS = 300
MAX_SCORE = 10.0

_SYSTEM_PROMPT = (
    "You are a relevance scoring assistant. "
    "Score how relevant each document is to the query on a scale of 0-10."
)
_SCORES_RE = re.compile(r"\[[\d.,\s]*\]")


def build_rerank_prompt(query: str, candidates: list[RetrievalResult]) -> str:
    # plain content only; the heading prefix is left out
    lines = [
        f'Query: "{query}"',
        "",
        "Rate the relevance of each document to the query (0-10, where 10 is most relevant):",
        "",
    ]
    for number, candidate in enumerate(candidates, start=1):
        snippet = candidate.content[:SNIPPET_CHARS]
        ellipsis = "..." if len(candidate.content) > SNIPPET_CHARS else ""
        lines += [f"Document {number}:", f"{snippet}{ellipsis}", ""]
    lines += ["Respond with ONLY a JSON array of scores, like: [8, 5, 9, 3, 7]", "Scores:"]
    return "\n".join(lines)


def parse_scores(content: str, expected: int) -> list[float] | None:
    """Extract `expected` scores from the model's answer, normalized to [0, 1].

    Returns None when the answer holds no usable array of the right length.
    """
    match = _SCORES_RE.search(content)
    if match is None:
        return None
    try:
        raw = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    if len(raw) != expected:
        return None
    return [min(max(float(score), 0.0), MAX_SCORE) / MAX_SCORE for score in raw]


class LLMReranker:
    """Reorders retrieval candidates by LLM-judged relevance."""

    def __init__(
        self,
        chat_provider: ChatProvider,
        *,
        model: str = DEFAULT_RERANK_MODEL,
        max_tokens: int = 500,
    ):
        self._chat = chat_provider
        self._model = model
        self._max_tokens = max_tokens

    async def rerank(
        self, query: str, candidates: list[RetrievalResult], top_k: int = 5
    ) -> list[RetrievalResult]:
        """Return the `top_k` candidates the model finds most relevant, best first.

        Ties keep their incoming order. Never raises for provider or parse
        failures: the first `top_k` candidates are returned unchanged instead.
        """
        if not candidates or top_k <= 0:
            return []
        if len(candidates) <= top_k:
            return list(candidates)

        messages = [
            ChatMessage(role="system", content=_SYSTEM_PROMPT),
            ChatMessage(role="user", content=build_rerank_prompt(query, candidates)),
        ]
        try:
            completion = await self._chat.complete(
                messages, self._model, temperature=0.0, max_tokens=self._max_tokens
            )
        except ProviderError as e:
            logger.warning("Reranking failed, keeping hybrid order: %s", e)
            return candidates[:top_k]

        scores = parse_scores(completion.content, len(candidates))
        if scores is None:
            logger.warning(
                "Could not parse %d scores from reranker answer %r, keeping hybrid order",
                len(candidates),
                completion.content[:200],
            )
            return candidates[:top_k]

        rescored = [replace(c, score=s) for c, s in zip(candidates, scores)]
        rescored.sort(key=lambda r: r.score, reverse=True)
        logger.debug(
            "Reranked %d candidates with %s, kept %d", len(candidates), self._model, top_k
        )
        return rescored[:top_k]
