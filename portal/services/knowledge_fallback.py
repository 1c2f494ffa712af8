"""
Knowledge Fallback Resolver — deterministic answers from the offline FAQ.

Used whenever the AI gateway is disabled, unreachable, slow, or returns
something that is not an answer, and by the offline client when the portal
API cannot be reached. No network, no randomness: the same table and the
same question always yield the same entry.

Scoring:
    score(entry) = number of tokens of entry.question (repeats included)
                   that appear as whole words of the normalized question

The highest score wins, ties go to table order. When nothing matches, the
first entry is returned tagged ``source="default"``.
"""

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Set, Tuple

SOURCE_KNOWLEDGE_BASE = "knowledge-base"
SOURCE_DEFAULT = "default"

_NON_WORD = re.compile(r"[^\w\s]")


@dataclass(frozen=True)
class KnowledgeEntry:
    """One bilingual FAQ entry, linked to a catalog service."""
    id: str
    question: str
    answer_fr: str
    answer_ar: str
    service_id: str

    def answer_for(self, language: str) -> str:
        return self.answer_ar if language == "ar" else self.answer_fr


@dataclass
class FallbackAnswer:
    message: str
    recommendations: List[Dict[str, str]] = field(default_factory=list)
    source: str = SOURCE_DEFAULT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "recommendations": [dict(r) for r in self.recommendations],
            "source": self.source,
        }


OFFLINE_FAQ: Tuple[KnowledgeEntry, ...] = (
    KnowledgeEntry(
        id="birth-cert",
        question="Comment obtenir un acte de naissance ?",
        answer_fr="Rendez-vous au bureau d'état civil avec une pièce d'identité et le livret de famille.",
        answer_ar="للحصول على شهادة الميلاد، توجه إلى مصلحة الحالة المدنية مصحوبًا ببطاقة الهوية وكتيب العائلة.",
        service_id="svc_birth_certificate",
    ),
    KnowledgeEntry(
        id="passport-docs",
        question="Pièces pour passeport",
        answer_fr="Préparez deux photos, un justificatif de domicile et votre carte nationale.",
        answer_ar="جهز صورتين شمسيتين، إثبات سكن، وبطاقة الهوية الوطنية.",
        service_id="svc_passport",
    ),
    KnowledgeEntry(
        id="legal-aid",
        question="Aide juridique gratuite",
        answer_fr="Contactez la maison de justice locale pour les permanences gratuites.",
        answer_ar="اتصل بدار العدالة المحلية للاستفادة من الاستشارات المجانية.",
        service_id="svc_legal_aid",
    ),
)


def normalize(text: str) -> str:
    """Lower-case, NFKD-decompose, then drop anything that is not a word char or space."""
    decomposed = unicodedata.normalize("NFKD", (text or "").lower())
    return _NON_WORD.sub("", decomposed)


def tokenize(text: str) -> List[str]:
    return normalize(text).split()


def _overlap(tokens: Sequence[str], words: Set[str]) -> int:
    return sum(1 for token in tokens if token in words)


class KnowledgeFallbackResolver:
    """Keyword-overlap matcher over a fixed, ordered FAQ table."""

    def __init__(self, entries: Sequence[KnowledgeEntry] = OFFLINE_FAQ):
        if not entries:
            raise ValueError("Knowledge fallback table cannot be empty")
        self._entries: Tuple[KnowledgeEntry, ...] = tuple(entries)
        # Entry tokens never change during a session
        self._entry_tokens: Tuple[Tuple[str, ...], ...] = tuple(
            tuple(tokenize(e.question)) for e in self._entries
        )

    @property
    def entries(self) -> Tuple[KnowledgeEntry, ...]:
        return self._entries

    def score(self, entry_index: int, question: str) -> int:
        return _overlap(self._entry_tokens[entry_index], set(tokenize(question)))

    def resolve(self, question: str, language: str = "fr") -> FallbackAnswer:
        best, best_score = self._entries[0], 0
        words = set(tokenize(question))
        for entry, tokens in zip(self._entries, self._entry_tokens):
            matched = _overlap(tokens, words)
            if matched > best_score:
                best, best_score = entry, matched

        return FallbackAnswer(
            message=best.answer_for(language),
            recommendations=[{"id": best.service_id, "title": best.question}],
            source=SOURCE_KNOWLEDGE_BASE if best_score > 0 else SOURCE_DEFAULT,
        )


def to_search_results(answer: FallbackAnswer) -> List[Dict[str, Any]]:
    """Shape a fallback answer like knowledge-base search results."""
    return [
        {
            "id": rec["id"],
            "title": rec["title"],
            "description": answer.message,
            "category": "faq",
            "type": "faq",
            "relevance": 1.0 if answer.source == SOURCE_KNOWLEDGE_BASE else 0.0,
        }
        for rec in answer.recommendations
    ]


_default_resolver = None


def get_fallback_resolver() -> KnowledgeFallbackResolver:
    """Get the process-wide resolver over the built-in offline FAQ."""
    global _default_resolver
    if _default_resolver is None:
        _default_resolver = KnowledgeFallbackResolver()
    return _default_resolver
