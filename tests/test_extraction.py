"""
Unit tests for brand whitelist matching, series scanning and model expansion.
"""

import pytest

from archive_taxonomy.extraction import (
    KNOWN_SERIES,
    SeriesMatch,
    expand_model_names,
    extract_brand,
    extract_series_and_models,
    find_series_matches,
    suppress_overlaps,
)


class TestExtractBrand:

    @pytest.mark.parametrize("raw, expected", [
        ("TEST MÁY RICOH A4", "Ricoh"),
        ("COPY TOSHIBA MÀU", "Toshiba"),
        ("hp laserjet", "HP"),
        ("Konica bizhub C258", "Konica Minolta"),
        ("MINOLTA Di", "Konica Minolta"),
        ("KONICA MINOLTA bizhub", "Konica Minolta"),
        ("Fuji Xerox DocuCentre", "Xerox"),
        ("Canon iR", "Canon"),
    ])
    def test_whitelisted(self, raw, expected):
        assert extract_brand(raw) == expected

    @pytest.mark.parametrize("raw", ["ABCXYZ", "TEST MÁY A4 COLOR", "", None])
    def test_unknown_is_none(self, raw):
        assert extract_brand(raw) is None

    def test_first_whitelist_entry_wins(self):
        assert extract_brand("Ricoh vs Canon") == "Ricoh"
        assert extract_brand("Canon vs Ricoh") == "Ricoh"


class TestExpandModelNames:

    def test_dash_range(self):
        assert set(expand_model_names("MPC 3054-4054-5054")) == {
            "MPC 3054", "MPC 4054", "MPC 5054"}

    def test_slash_list(self):
        assert expand_model_names("e-Studio 557/657") == ["e-Studio 557", "e-Studio 657"]

    def test_alphanumeric_tokens(self):
        assert expand_model_names("e-Studio 5516AC-6516AC") == [
            "e-Studio 5516AC", "e-Studio 6516AC"]

    def test_ir_list(self):
        assert expand_model_names("iR 2520/2525") == ["iR 2520", "iR 2525"]

    def test_prefix_not_duplicated_in_token(self):
        assert expand_model_names("iR IR2520") == ["iR 2520"]

    def test_short_and_digitless_tokens_dropped(self):
        assert expand_model_names("MP 7001-2, abc") == ["MP 7001"]

    def test_generic_prefix_fallback(self):
        assert expand_model_names("bizhub 287/367") == ["bizhub 287", "bizhub 367"]

    def test_raw_input_kept_when_nothing_splits(self):
        assert expand_model_names("MPC") == ["MPC"]
        assert expand_model_names("Laserjet") == ["Laserjet"]

    def test_trivial_input_dropped(self):
        assert expand_model_names("ab") == []
        assert expand_model_names("") == []
        assert expand_model_names(None) == []

    def test_dedup(self):
        assert expand_model_names("MPC 3054/3054") == ["MPC 3054"]

    def test_generic_prefix_single_letter_echo_stripped(self):
        assert expand_model_names("Bizhub C287/C367") == ["Bizhub C 287", "Bizhub C 367"]


class TestSeriesScan:

    def test_single_series_with_range(self):
        result = extract_series_and_models("Service Manual MPC 3003-3503-4503.pdf")
        assert result.series_list == ["MPC"]
        assert len(result.models) == 3
        assert result.brand == "Ricoh"

    def test_canon_ir_list(self):
        result = extract_series_and_models("Canon iR 2520/2525.pdf")
        assert result.series_list == ["iR"]
        assert sorted(result.models) == ["iR 2520", "iR 2525"]
        assert result.brand == "Canon"

    def test_two_series_at_different_positions(self):
        result = extract_series_and_models("MP7001-2 MPC 6502 parts.pdf")
        assert "MP" in result.series_list
        assert "MPC" in result.series_list
        assert "MP 7001" in result.models
        assert "MPC 6502" in result.models

    def test_series_listed_once_models_from_every_occurrence(self):
        result = extract_series_and_models("MPC 2003 and MPC 2503.pdf")
        assert result.series_list == ["MPC"]
        assert sorted(result.models) == ["MPC 2003", "MPC 2503"]

    def test_explicit_brand_beats_series_brand(self):
        result = extract_series_and_models("Toshiba e-Studio 2505.pdf")
        assert result.brand == "Toshiba"
        assert result.series_list == ["e-Studio"]

    def test_brand_inferred_from_first_series(self):
        assert extract_series_and_models("e-Studio 5516AC.pdf").brand == "Toshiba"

    def test_nothing_found(self):
        result = extract_series_and_models("HP LaserJet Pro M404dn.pdf")
        assert result.series_list == []
        assert result.models == []
        assert result.brand == "HP"

    def test_case_insensitive_scan(self):
        assert extract_series_and_models("mpc3054.pdf").series_list == ["MPC"]

    def test_range_stops_at_next_series_code(self):
        result = extract_series_and_models("MP 2554-3054-MPC 3004.pdf")
        assert result.series_list == ["MP", "MPC"]
        assert result.models == ["MP 2554", "MP 3054", "MPC 3004"]

    def test_different_series_joined_by_dash(self):
        result = extract_series_and_models("Parts MPC 3054-SP 5300.pdf")
        assert result.series_list == ["MPC", "SP"]
        assert result.models == ["MPC 3054", "SP 5300"]

    def test_different_series_joined_by_comma(self):
        result = extract_series_and_models("MP 7001,MPC 6502.pdf")
        assert result.series_list == ["MP", "MPC"]
        assert result.models == ["MP 7001", "MPC 6502"]

    def test_trailing_word_not_glued_to_model(self):
        assert extract_series_and_models("MPC3054SERVICE.pdf").models == ["MPC 3054"]


class TestOverlapSuppression:

    def test_longer_series_wins_at_same_position(self):
        matches = [
            SeriesMatch(position=0, length=6, series="MP", brand="Ricoh", numbers="3054"),
            SeriesMatch(position=0, length=8, series="MPC", brand="Ricoh", numbers="3054"),
        ]
        kept = suppress_overlaps(matches)
        assert [m.series for m in kept] == ["MPC"]

    def test_ir_adv_suppresses_ir(self):
        matches = [
            SeriesMatch(position=4, length=11, series="iR-ADV", brand="Canon", numbers="4525"),
            SeriesMatch(position=4, length=7, series="iR", brand="Canon", numbers="4525"),
        ]
        assert [m.series for m in suppress_overlaps(matches)] == ["iR-ADV"]

    def test_disjoint_matches_all_kept_in_reading_order(self):
        matches = [
            SeriesMatch(position=9, length=8, series="MPC", brand="Ricoh", numbers="6502"),
            SeriesMatch(position=0, length=8, series="MP", brand="Ricoh", numbers="7001-2"),
        ]
        assert [m.series for m in suppress_overlaps(matches)] == ["MP", "MPC"]

    def test_overlapping_spans_at_different_positions_both_kept(self):
        matches = [
            SeriesMatch(position=0, length=12, series="MP", brand="Ricoh", numbers="2554-3054"),
            SeriesMatch(position=8, length=8, series="MPC", brand="Ricoh", numbers="3004"),
        ]
        assert [m.series for m in suppress_overlaps(matches)] == ["MP", "MPC"]

    def test_mpc_token_never_counted_as_mp(self):
        found = find_series_matches("MPC 3054")
        kept = suppress_overlaps(found)
        assert [m.series for m in kept] == ["MPC"]

    def test_known_series_labels(self):
        assert KNOWN_SERIES == [
            "MPC", "MPW", "MP", "IM", "SP", "e-Studio", "iR-ADV", "iR", "Pro C"]
