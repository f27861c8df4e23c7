"""
Tests for content normalisation and hashing.
"""

import hashlib

import pytest

from timetable.normalizer import content_hash, fingerprint, normalize


class TestNormalize:
    """Test cases for stripping volatile content."""

    def test_render_timestamp_removed(self):
        """Test that the "Stand" timestamp disappears completely."""
        assert normalize("<p>Stand: 03.11.2025 07:45</p>") == "<p></p>"

    def test_timestamp_with_seconds_removed(self):
        """Test that a date with a seconds-precision time is removed as a whole."""
        assert normalize("gedruckt 03.11.2025 07:45:12 ok") == "gedruckt ok"

    def test_generator_meta_and_title_removed(self):
        """Test that the generator tag and the page title are stripped."""
        markup = '<head><meta name="GENERATOR" content="Untis 2024"><title>Untis 03.11.2025</title></head>'
        assert normalize(markup) == "<head></head>"

    def test_period_header_removed(self):
        """Test that the period validity header is stripped up to its end marker."""
        markup = "<font>Periode3   1.9.2025 (1) Zwischenplan</font>"
        assert normalize(markup) == "<font></font>"

    def test_bare_dates_removed(self):
        """Test that full and short dates are removed."""
        assert normalize("Mo 3.11. bis 07.11.2025 Fr") == "Mo bis Fr"

    def test_whitespace_collapsed(self):
        """Test that runs of whitespace become one space and ends are trimmed."""
        assert normalize("  <td>\n\n  MA\t\t</td>  ") == "<td> MA </td>"

    def test_empty_input(self):
        """Test that empty and missing input normalise to an empty string."""
        assert normalize("") == ""
        assert normalize(None) == ""

    def test_removal_splicing_new_match(self):
        """Test that text spliced together by a removal is stripped too."""
        assert normalize("1<title>x</title>.2.") == ""

    @pytest.mark.parametrize("markup", [
        "1<title>x</title>.2.",
        "Stand: 03.11.2025 07:45 <td>MA</td>",
        "<meta name=GENERATOR content=x>Periode1 1.9.2025 Zwischenplan   text",
        "  a\n\n b  ",
        "no volatile content at all",
    ])
    def test_idempotent(self, markup):
        """Test that normalising twice gives the same result as once."""
        once = normalize(markup)
        assert normalize(once) == once

    def test_lesson_content_preserved(self):
        """Test that lesson fields survive normalisation."""
        result = normalize('<font color="#FF0000">MA</font><font>4)</font><font>R101</font>')
        assert "MA" in result
        assert "4)" in result
        assert "R101" in result


class TestHashing:
    """Test cases for content hashes."""

    def test_content_hash_is_sha256_hex(self):
        """Test that the hash is the SHA-256 hex digest of the UTF-8 bytes."""
        assert content_hash("Ausfälle") == hashlib.sha256("Ausfälle".encode("utf-8")).hexdigest()
        assert len(content_hash("")) == 64

    def test_volatile_only_difference_hashes_equal(self, make_page, make_lesson):
        """Test that two renders of the same plan hash identically."""
        cells = [make_lesson("MA", "1)", highlighted=True), make_lesson("DE")]
        first = make_page(cells, stand="03.11.2025 07:45")
        second = make_page(cells, stand="04.11.2025 12:01")
        assert first != second
        assert fingerprint(first) == fingerprint(second)

    def test_lesson_difference_changes_hash(self, make_page, make_lesson):
        """Test that a changed room produces a different hash."""
        first = make_page([make_lesson("MA", room="R101")])
        second = make_page([make_lesson("MA", room="R204")])
        assert fingerprint(first) != fingerprint(second)

    def test_fingerprint_matches_manual_pipeline(self, sample_page):
        """Test that fingerprint equals hashing the normalised markup."""
        assert fingerprint(sample_page) == content_hash(normalize(sample_page))
