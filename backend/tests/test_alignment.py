"""
Tests for LRC helpers and word-synced / line-synced alignment.
"""
from unittest.mock import patch

import pytest

from lyrics_api.services.alignment import (
    MAX_TOKENS,
    TimedToken,
    WordSyncedLine,
    align,
    collect_offsets,
    diff_tokens,
    mean_and_variance,
    render_word_synced,
    tokenize_line_synced,
    tokenize_word_synced,
)
from lyrics_api.services.lrc import format_offset, format_time, parse_lrc


def _word_line(start: float, end: float, words: list[tuple[str, float]]) -> WordSyncedLine:
    return WordSyncedLine.model_validate({
        "ts": start,
        "te": end,
        "l": [{"c": text, "o": offset} for text, offset in words],
        "x": "".join(text for text, _ in words),
    })


def _word_lines(shift: float) -> list[WordSyncedLine]:
    """Two lines whose words start `shift` seconds after the line-synced lyrics."""
    return [
        _word_line(10.0 + shift, 13.0 + shift, [("Hello", 0.0), (" ", 0.5), ("world", 0.6)]),
        _word_line(20.0 + shift, 23.0 + shift, [("Goodbye", 0.0), (" ", 0.5), ("moon", 0.8)]),
    ]


LINE_LRC = "[00:10.00] Hello world\n[00:20.00] Goodbye moon\n"


# ============================================
# LRC helpers
# ============================================

def test_parse_lrc_lines_and_end_times():
    lines = parse_lrc("[00:10.00] Hello\n[00:12.500] World\n")

    assert lines == [
        {"text": "Hello", "startTimeMs": 10000, "endTimeMs": 12500},
        {"text": "World", "startTimeMs": 12500, "endTimeMs": 17500},
    ]


def test_parse_lrc_skips_tags_and_empty_lines():
    lines = parse_lrc("[ar:Rick Astley]\n[00:01.00]\n[00:02.00] Never\n")

    assert [line["text"] for line in lines] == ["Never"]


def test_format_time():
    assert format_time(0) == "00:00.00"
    assert format_time(75.25) == "01:15.25"


def test_format_offset_sign():
    assert format_offset(2.0) == "+2.0"
    assert format_offset(-1.5) == "-1.5"
    assert format_offset(0.0) == "0.0"


# ============================================
# Tokenization
# ============================================

def test_tokenize_word_synced_absolute_times_and_line_breaks():
    tokens = tokenize_word_synced(_word_lines(0.0)[:1])

    assert tokens == [
        TimedToken("Hello", 10.0),
        TimedToken(" ", 10.5),
        TimedToken("world", 10.6),
        TimedToken("\n"),
    ]


def test_tokenize_line_synced_times_only_first_word():
    tokens = tokenize_line_synced(LINE_LRC)

    assert tokens[0] == TimedToken("Hello", 10.0)
    assert tokens[1] == TimedToken(" ")
    assert tokens[2] == TimedToken("world")
    assert tokens[3] == TimedToken("\n")
    assert tokens[4] == TimedToken("Goodbye", 20.0)
    # No trailing line break after the last line
    assert tokens[-1] == TimedToken("moon")


def test_render_word_synced():
    rendered = render_word_synced(_word_lines(0.0)[:1])

    assert rendered == "[00:10.00] <00:10.00> Hello <00:10.50>   <00:10.60> world <00:13.00>\n"


# ============================================
# Diff
# ============================================

def test_diff_is_case_insensitive():
    left = [TimedToken("HELLO", 1.0)]
    right = [TimedToken("hello", 3.0)]

    runs = diff_tokens(left, right)

    assert [run.op for run in runs] == ["MATCH"]
    assert collect_offsets(runs) == [2.0]


def test_diff_reports_removed_and_added():
    left = [TimedToken("a"), TimedToken("b"), TimedToken("c")]
    right = [TimedToken("a"), TimedToken("x"), TimedToken("c")]

    runs = diff_tokens(left, right)

    assert [(run.op, run.text) for run in runs] == [
        ("MATCH", "a"),
        ("REMOVED", "b"),
        ("ADDED", "x"),
        ("MATCH", "c"),
    ]


def test_collect_offsets_ignores_untimed_pairs():
    runs = diff_tokens(
        [TimedToken("a", 1.0), TimedToken("b")],
        [TimedToken("a", 1.5), TimedToken("b", 9.0)],
    )

    assert collect_offsets(runs) == [0.5]


def test_mean_and_population_variance():
    mean, variance = mean_and_variance([1.0, 3.0])

    assert mean == 2.0
    assert variance == 1.0


# ============================================
# align()
# ============================================

def test_align_accepts_constant_offset():
    lines = _word_lines(2.0)
    word_lrc = render_word_synced(lines)

    outcome = align(word_lrc, tokenize_word_synced(lines), LINE_LRC)

    assert outcome.word_synced == "[offset:+2.0]\n" + word_lrc
    assert outcome.line_synced == LINE_LRC
    stats = outcome.debug_info["lyricMatchingStats"]
    assert stats["mean"] == pytest.approx(2.0)
    assert stats["variance"] == pytest.approx(0.0)
    assert len(stats["samples"]) == 2


def test_align_rejects_high_variance():
    lines = [
        _word_line(10.0, 13.0, [("Hello", 0.0), (" ", 0.5), ("world", 0.6)]),
        _word_line(24.0, 27.0, [("Goodbye", 0.0), (" ", 0.5), ("moon", 0.8)]),
    ]
    # offsets 0.0 and 4.0 -> variance 4.0

    outcome = align(render_word_synced(lines), tokenize_word_synced(lines), LINE_LRC)

    assert outcome.word_synced is None
    assert outcome.line_synced == LINE_LRC
    assert outcome.debug_info["lyricMatchingStats"]["variance"] == pytest.approx(4.0)
    assert "variance is too high" in outcome.debug_info["comment"]


def test_align_without_samples_keeps_word_synced():
    lines = [_word_line(10.0, 13.0, [("Completely", 0.0), (" ", 0.5), ("different", 0.6)])]
    word_lrc = render_word_synced(lines)

    outcome = align(word_lrc, tokenize_word_synced(lines), LINE_LRC)

    assert outcome.word_synced == word_lrc
    assert outcome.line_synced == LINE_LRC
    assert outcome.debug_info["comment"] == "no synced basic lyrics found for validation"


def test_align_without_line_synced_reference():
    lines = _word_lines(0.0)
    word_lrc = render_word_synced(lines)

    outcome = align(word_lrc, tokenize_word_synced(lines), None)

    assert outcome.word_synced == word_lrc
    assert outcome.line_synced is None


def test_align_refuses_to_diff_oversized_input():
    oversized = [TimedToken("la", float(i)) for i in range(MAX_TOKENS + 1)]

    with patch("lyrics_api.services.alignment.diff_tokens") as mock_diff:
        outcome = align("[00:00.00] la\n", oversized, LINE_LRC)

    mock_diff.assert_not_called()
    assert outcome.word_synced is None
    assert outcome.line_synced == LINE_LRC
    assert outcome.debug_info["comment"] == "lyrics too long to diff"
