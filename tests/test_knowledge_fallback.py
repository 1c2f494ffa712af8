"""
Knowledge fallback resolver tests — normalization, scoring, tie-breaking, tagging.
"""

import unittest

from portal.services.knowledge_fallback import (
    KnowledgeEntry,
    KnowledgeFallbackResolver,
    OFFLINE_FAQ,
    SOURCE_DEFAULT,
    SOURCE_KNOWLEDGE_BASE,
    get_fallback_resolver,
    normalize,
    to_search_results,
    tokenize,
)


class TestNormalization(unittest.TestCase):

    def test_lowercases_and_strips_accents(self):
        self.assertEqual(normalize("Pièces pour PASSEPORT"), "pieces pour passeport")

    def test_drops_punctuation(self):
        self.assertEqual(tokenize("Comment obtenir un acte de naissance ?"),
                         ["comment", "obtenir", "un", "acte", "de", "naissance"])

    def test_keeps_arabic_letters(self):
        tokens = tokenize("شهادة الميلاد؟")
        self.assertEqual(tokens, ["شهادة", "الميلاد"])

    def test_empty_input(self):
        self.assertEqual(tokenize(""), [])
        self.assertEqual(tokenize("   ?! "), [])
        self.assertEqual(tokenize(None), [])


class TestResolve(unittest.TestCase):

    def setUp(self):
        self.resolver = KnowledgeFallbackResolver()

    def test_birth_certificate_question(self):
        answer = self.resolver.resolve("comment avoir un acte de naissance")
        self.assertEqual(answer.source, SOURCE_KNOWLEDGE_BASE)
        self.assertEqual(answer.message, OFFLINE_FAQ[0].answer_fr)
        self.assertEqual(answer.recommendations, [
            {"id": "svc_birth_certificate", "title": "Comment obtenir un acte de naissance ?"},
        ])

    def test_unrelated_question_returns_first_entry_as_default(self):
        answer = self.resolver.resolve("xyz unrelated gibberish")
        self.assertEqual(answer.source, SOURCE_DEFAULT)
        self.assertEqual(answer.message, OFFLINE_FAQ[0].answer_fr)
        self.assertEqual(answer.recommendations[0]["id"], "svc_birth_certificate")

    def test_empty_question_is_default(self):
        answer = self.resolver.resolve("")
        self.assertEqual(answer.source, SOURCE_DEFAULT)

    def test_passport_question_with_accents(self):
        answer = self.resolver.resolve("Quelles PIECES pour un passeport ?")
        self.assertEqual(answer.source, SOURCE_KNOWLEDGE_BASE)
        self.assertEqual(answer.recommendations[0]["id"], "svc_passport")

    def test_arabic_answer(self):
        answer = self.resolver.resolve("aide juridique gratuite", language="ar")
        self.assertEqual(answer.message, OFFLINE_FAQ[2].answer_ar)
        self.assertEqual(answer.recommendations[0]["id"], "svc_legal_aid")

    def test_unknown_language_is_french(self):
        answer = self.resolver.resolve("aide juridique gratuite", language="en")
        self.assertEqual(answer.message, OFFLINE_FAQ[2].answer_fr)

    def test_whole_words_only(self):
        # "un" must not match inside "unrelated"
        self.assertEqual(self.resolver.score(0, "unrelated"), 0)

    def test_deterministic(self):
        first = self.resolver.resolve("passeport et acte").to_dict()
        for _ in range(5):
            self.assertEqual(self.resolver.resolve("passeport et acte").to_dict(), first)

    def test_exactly_one_recommendation(self):
        for question in ("acte", "passeport", "juridique", "rien"):
            self.assertEqual(len(self.resolver.resolve(question).recommendations), 1)

    def test_adding_entry_words_never_lowers_its_score(self):
        base = "je voudrais des informations"
        before = self.resolver.score(1, base)
        after = self.resolver.score(1, base + " passeport")
        self.assertGreaterEqual(after, before)
        self.assertGreater(after, before)


class TestTieBreaking(unittest.TestCase):

    def test_ties_go_to_table_order(self):
        entries = [
            KnowledgeEntry("a", "carte grise", "A", "أ", "svc_a"),
            KnowledgeEntry("b", "carte vitale", "B", "ب", "svc_b"),
        ]
        resolver = KnowledgeFallbackResolver(entries)
        answer = resolver.resolve("ma carte")
        self.assertEqual(answer.message, "A")
        self.assertEqual(answer.source, SOURCE_KNOWLEDGE_BASE)

    def test_repeated_tokens_count(self):
        entries = [
            KnowledgeEntry("a", "visa", "A", "أ", "svc_a"),
            KnowledgeEntry("b", "visa visa", "B", "ب", "svc_b"),
        ]
        answer = KnowledgeFallbackResolver(entries).resolve("visa")
        self.assertEqual(answer.message, "B")

    def test_empty_table_rejected(self):
        with self.assertRaises(ValueError):
            KnowledgeFallbackResolver([])


class TestHelpers(unittest.TestCase):

    def test_search_results_shape(self):
        resolver = get_fallback_resolver()
        results = to_search_results(resolver.resolve("passeport"))
        self.assertEqual(len(results), 1)
        self.assertEqual(results[0]["id"], "svc_passport")
        self.assertEqual(results[0]["relevance"], 1.0)
        self.assertEqual(set(results[0]), {"id", "title", "description", "category", "type", "relevance"})

    def test_default_answer_has_zero_relevance(self):
        results = to_search_results(get_fallback_resolver().resolve("zzz"))
        self.assertEqual(results[0]["relevance"], 0.0)

    def test_singleton(self):
        self.assertIs(get_fallback_resolver(), get_fallback_resolver())


if __name__ == "__main__":
    unittest.main()
