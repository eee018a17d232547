"""
Tests for import id generation and memo reference handling.
"""

from api.models.reference import (
    IMPORT_ID_MAX_LENGTH, build_memo_with_reference, collapse_whitespace, extract_reference,
    generate_import_id, generate_random_import_id, matches_import_id,
    normalize_reference, truncate_memo
)


class TestImportId:
    """Deterministic and random import ids."""

    def test_format(self):
        assert generate_import_id("ABC123") == "BS:ABC123"

    def test_dashes_are_removed(self):
        assert normalize_reference("2025-01-10-0001") == "202501100001"
        assert generate_import_id("2025-01-10-0001") == "BS:202501100001"

    def test_round_trip_for_various_references(self):
        references = [
            "ABC123", "REF-003", "--leading", "trailing--", "a-b-c-d-e-f",
            "x" * 60, "4711-0815-" * 6, "Ref with spaces", "ümlaut-ß",
        ]
        for reference in references:
            assert matches_import_id(reference, generate_import_id(reference))

    def test_capped_at_ledger_limit(self):
        token = generate_import_id("9" * 100)
        assert len(token) == IMPORT_ID_MAX_LENGTH
        assert matches_import_id("9" * 100, token)

    def test_prefix_of_other_reference_does_not_match(self):
        assert not matches_import_id("AB", generate_import_id("ABC"))
        assert not matches_import_id("ABC", generate_import_id("AB"))

    def test_missing_import_id_never_matches(self):
        assert not matches_import_id("ABC", None)
        assert not matches_import_id("ABC", "")

    def test_random_import_id(self):
        first = generate_random_import_id()
        second = generate_random_import_id()
        assert first != second
        assert first.startswith("BS:")
        assert len(first) <= IMPORT_ID_MAX_LENGTH
        assert not matches_import_id("ABC123", first)


class TestMemoReference:
    """Memo suffix construction and extraction."""

    def test_suffix_appended(self):
        assert build_memo_with_reference("Amazon purchase", "ABC123") == "Amazon purchase, Ref: ABC123"

    def test_whitespace_collapsed(self):
        memo = build_memo_with_reference("  Einkauf \n\t REWE   Markt ", "R1")
        assert memo == "Einkauf REWE Markt, Ref: R1"
        assert collapse_whitespace(None) == ""

    def test_empty_memo(self):
        assert build_memo_with_reference("", "R1") == "Ref: R1"
        assert build_memo_with_reference(None, "R1") == "Ref: R1"
        assert extract_reference("Ref: R1") == "R1"

    def test_long_memo_truncated_from_front(self):
        memo = ("A very long memo text repeated many times " * 10)[:350]
        result = build_memo_with_reference(memo, "REF999", limit=300)

        assert len(result) == 300
        assert result.startswith("...")
        assert result.endswith(", Ref: REF999")
        assert extract_reference(result) == "REF999"

    def test_truncation_round_trip(self):
        references = ["REF999", "2025-01-10-0001", "x" * 40, "ABC"]
        for length in (301, 350, 1000):
            memo = ("word " * 300)[:length]
            for reference in references:
                result = build_memo_with_reference(memo, reference, limit=300)
                assert len(result) <= 300
                assert extract_reference(result) == reference

    def test_memo_containing_ref_marker(self):
        result = build_memo_with_reference("Ref: OTHER invoice", "REAL1")
        assert extract_reference(result) == "REAL1"

    def test_suffix_longer_than_limit(self):
        result = build_memo_with_reference("some memo", "R" * 40, limit=20)
        assert extract_reference(result) == "R" * 40

    def test_extract_without_reference(self):
        assert extract_reference("Groceries") is None
        assert extract_reference("") is None
        assert extract_reference(None) is None
        assert extract_reference("Ref:   ") is None

    def test_extract_from_ledger_memo(self):
        assert extract_reference("Amazon purchase, Ref: ABC123") == "ABC123"


class TestTruncateMemo:

    def test_short_memo_untouched(self):
        assert truncate_memo("short", 300) == "short"
        assert truncate_memo(None, 300) is None

    def test_long_memo_truncated_at_end(self):
        result = truncate_memo("x" * 400, 300)
        assert len(result) == 300
        assert result.endswith("...")
