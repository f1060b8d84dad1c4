"""
Tests for description search and marker exclusion.
"""

from conciliacao.utils.text_search import filter_by_description, has_marker, matches_search
from tests.factories import make_statement


class TestMatchesSearch:
    def test_empty_term_matches_everything(self):
        assert matches_search("PIX RECEBIDO", None)
        assert matches_search("PIX RECEBIDO", "")

    def test_substring_ignores_case_and_spacing(self):
        assert matches_search("PIX  ALUGUEL   SALAO", "aluguel salao")

    def test_typo_found_by_fuzzy_match(self):
        assert matches_search("PIX ALUGUEL SALAO", "aluguell")

    def test_unrelated_term(self):
        assert not matches_search("PIX ALUGUEL SALAO", "energia eletrica")


class TestFilterByDescription:
    def test_markers_excluded(self):
        assert has_marker("TED CONTAMAX APLICACAO", ["contamax"])

        items = [
            make_statement("s1", description="TED CONTAMAX APLICACAO"),
            make_statement("s2", description="PIX OFERTA CULTO"),
        ]

        kept = filter_by_description(items, excluded_markers=["CONTAMAX"])

        assert [s.id for s in kept] == ["s2"]

    def test_search_and_markers_combined(self):
        items = [
            make_statement("s1", description="PIX OFERTA CULTO"),
            make_statement("s2", description="PIX DIZIMO"),
            make_statement("s3", description="CONTAMAX OFERTA"),
        ]

        kept = filter_by_description(items, "oferta", excluded_markers=["CONTAMAX"])

        assert [s.id for s in kept] == ["s1"]
