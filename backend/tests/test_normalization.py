"""
Call-Center CRM - Normalisation des noms arabes
Run: cd backend && pytest tests/test_normalization.py -v
"""

from services.normalization import find_matching_node, names_match, normalize_text


class TestNormalizeText:
    def test_alef_variants(self):
        assert normalize_text("أمانة العاصمة") == normalize_text("امانه العاصمه")
        assert normalize_text("إب") == "اب"
        assert normalize_text("آل") == "ال"

    def test_taa_marbuta_and_alef_maksura(self):
        assert normalize_text("الحديدة") == "الحديده"
        assert normalize_text("مستشفى") == "مستشفي"

    def test_trim(self):
        assert normalize_text("  صنعاء  ") == "صنعاء"

    def test_none_and_numbers(self):
        assert normalize_text(None) == ""
        assert normalize_text(12) == "12"

    def test_idempotent(self):
        for text in ["أمانة العاصمة", "  إب ", "مستشفى الثورة", "", "Sana'a"]:
            once = normalize_text(text)
            assert normalize_text(once) == once

    def test_latin_untouched(self):
        assert normalize_text("Aden") == "Aden"


class TestNamesMatch:
    def test_exact_canonical(self):
        assert names_match("أمانة العاصمة", "امانه العاصمه")

    def test_substring_long_enough(self):
        assert names_match("العاصمة", "أمانة العاصمة")

    def test_short_substring_rejected(self):
        # 3 caractères: trop court pour une inclusion
        assert not names_match("اب", "الابيض")
        assert not names_match("عدن", "عدن الجديدة")

    def test_short_exact_still_matches(self):
        assert names_match("إب", "اب")

    def test_empty_never_matches(self):
        assert not names_match("", "")
        assert not names_match(None, "صنعاء")


class TestFindMatchingNode:
    def test_exact_preferred_over_substring(self):
        nodes = [
            {"id": "1", "name": "أمانة العاصمة"},
            {"id": "2", "name": "العاصمة"},
        ]
        assert find_matching_node("العاصمه", nodes)["id"] == "2"

    def test_substring_fallback(self):
        nodes = [{"id": "1", "name": "أمانة العاصمة"}]
        assert find_matching_node("العاصمة", nodes)["id"] == "1"

    def test_no_match(self):
        assert find_matching_node("عدن", [{"id": "1", "name": "صنعاء"}]) is None
        assert find_matching_node("", [{"id": "1", "name": "صنعاء"}]) is None
