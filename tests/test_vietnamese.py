"""
Unit tests for Vietnamese folding and slugs.
"""

import pytest

from archive_taxonomy.vietnamese import (
    compare_vietnamese,
    contains_vietnamese,
    normalize,
    normalize_search_query,
    slugify,
)


class TestNormalize:

    def test_folds_lowercase_tones(self):
        assert normalize("Máy photocopy Ricoh") == "May photocopy Ricoh"
        assert normalize("Hướng dẫn sử dụng") == "Huong dan su dung"

    def test_preserves_case(self):
        assert normalize("ĐIỆN THOẠI") == "DIEN THOAI"
        assert normalize("Đà Nẵng") == "Da Nang"

    def test_empty_string(self):
        assert normalize("") == ""

    def test_decomposed_input_folds_like_precomposed(self):
        decomposed = "ma\u0301y"
        assert normalize(decomposed) == "may"

    def test_non_vietnamese_text_untouched(self):
        assert normalize("MPC 3054-4054 ñ 東京") == "MPC 3054-4054 ñ 東京"

    @pytest.mark.parametrize("text", [
        "",
        "Tài liệu kỹ thuật",
        "\u01a1\u0302",
        "\u1ea1\u0301",
        "Ỹ ỹ Ự ự đĐ",
        "\u0300\u0301 leading marks",
        "emoji 🖨️ and tabs\t",
    ])
    def test_idempotent(self, text):
        once = normalize(text)
        assert normalize(once) == once


class TestComparisons:

    def test_compare_ignores_diacritics_and_case(self):
        assert compare_vietnamese("Máy in", "may IN")

    def test_compare_case_sensitive(self):
        assert not compare_vietnamese("Máy in", "may IN", case_sensitive=True)
        assert compare_vietnamese("Máy in", "May in", case_sensitive=True)

    def test_contains(self):
        assert contains_vietnamese("Hướng dẫn sử dụng MPC", "huong DAN")
        assert not contains_vietnamese("Hướng dẫn", "driver")

    def test_search_query_normalized(self):
        assert normalize_search_query("  Tài Liệu ") == "tai lieu"


class TestSlugify:

    def test_vietnamese_slug(self):
        assert slugify("Tài liệu-Hướng dẫn sử dụng") == "tai-lieu-huong-dan-su-dung"

    def test_strips_punctuation_and_collapses_separators(self):
        assert slugify("  Service -- Manual (v2)!  ") == "service-manual-v2"

    def test_other_accents_dropped_to_ascii(self):
        assert slugify("Crème Brûlée") == "creme-brulee"

    def test_empty(self):
        assert slugify("") == ""
