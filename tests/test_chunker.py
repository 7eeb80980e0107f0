"""
Tests for the word-window chunker.

Validates:
1. Window offsets for long documents
2. Short documents are kept verbatim
3. Termination when overlap >= chunk_size
4. Parameter validation
"""

import pytest

from docqa.chunking.chunker import chunk_text, max_windows, window_stride
from docqa.errors import InputError


def _words(n: int) -> list[str]:
    return [f"w{i}" for i in range(n)]


class TestWindowing:
    """Long documents are cut into overlapping windows."""

    def test_1200_words_gives_three_windows_at_0_450_900(self):
        words = _words(1200)
        chunks = chunk_text(" ".join(words), chunk_size=500, overlap=50)

        assert len(chunks) == 3
        assert chunks[0].split()[0] == "w0"
        assert chunks[1].split()[0] == "w450"
        assert chunks[2].split()[0] == "w900"
        assert len(chunks[0].split()) == 500
        assert len(chunks[2].split()) == 300

    def test_last_window_ends_on_final_word(self):
        chunks = chunk_text(" ".join(_words(23)), chunk_size=5, overlap=2)
        assert chunks[-1].split()[-1] == "w22"

    def test_every_word_is_covered(self):
        words = _words(97)
        chunks = chunk_text(" ".join(words), chunk_size=10, overlap=3)
        covered = {w for chunk in chunks for w in chunk.split()}
        assert covered == set(words)

    def test_consecutive_windows_share_overlap_words(self):
        chunks = chunk_text(" ".join(_words(30)), chunk_size=10, overlap=4)
        assert chunks[0].split()[-4:] == chunks[1].split()[:4]

    def test_deterministic(self):
        text = " ".join(_words(321))
        assert chunk_text(text, 40, 7) == chunk_text(text, 40, 7)

    def test_whitespace_runs_are_collapsed_in_windows(self):
        text = "a  b\n\nc\td e f g"
        chunks = chunk_text(text, chunk_size=4, overlap=0)
        assert chunks == ["a b c d", "e f g"]


class TestShortAndEmpty:
    """Documents at or below chunk_size, and documents with no words."""

    def test_short_text_returned_verbatim(self):
        text = "  hello   world \n"
        assert chunk_text(text, chunk_size=5, overlap=1) == [text]

    def test_exactly_chunk_size_is_single_chunk(self):
        text = " ".join(_words(5))
        assert chunk_text(text, chunk_size=5, overlap=1) == [text]

    @pytest.mark.parametrize("text", ["", "   ", "\n\t  \n"])
    def test_no_words_gives_no_chunks(self, text):
        assert chunk_text(text, chunk_size=5, overlap=1) == []


class TestDegenerateParameters:
    """Overlap at or above chunk_size still terminates."""

    def test_overlap_not_smaller_than_size_slides_one_word(self):
        chunks = chunk_text(" ".join(_words(7)), chunk_size=3, overlap=5)

        assert [c.split()[0] for c in chunks] == ["w0", "w1", "w2", "w3", "w4"]
        assert len(chunks) <= max_windows(7, 3, 5)

    def test_stride_is_at_least_one(self):
        assert window_stride(10, 10) == 1
        assert window_stride(10, 50) == 1
        assert window_stride(500, 50) == 450

    def test_chunk_count_within_bound(self):
        for size, overlap in [(5, 0), (5, 4), (7, 3), (3, 3)]:
            chunks = chunk_text(" ".join(_words(50)), size, overlap)
            assert len(chunks) <= max_windows(50, size, overlap)

    def test_zero_chunk_size_rejected(self):
        with pytest.raises(InputError):
            chunk_text("a b c", chunk_size=0, overlap=0)

    def test_negative_overlap_rejected(self):
        with pytest.raises(InputError):
            chunk_text("a b c", chunk_size=2, overlap=-1)
