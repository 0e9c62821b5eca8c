"""
Alignment of word-synced lyrics against independently timed line-synced lyrics.

Word-level timings sometimes carry a constant bias. Both transcripts are
tokenized, diffed case-insensitively, and every matched pair where both sides
carry a timestamp yields one offset sample (word time - line time).

- no samples:            word-synced lyrics returned as-is
- variance >= 1.5 s²:    alignment rejected, line-synced lyrics authoritative
- variance <  1.5 s²:    word-synced lyrics prefixed with [offset:<mean>]
"""
import statistics
from dataclasses import dataclass, field
from difflib import SequenceMatcher

from pydantic import BaseModel, Field

from lyrics_api.services.lrc import format_offset, format_time, parse_lrc

MAX_TOKENS = 5000
MAX_OFFSET_VARIANCE = 1.5

LINE_BREAK = "\n"


class SyncedWord(BaseModel):
    """A word (or space) with its offset in seconds from the line start."""
    text: str = Field(alias="c")
    offset: float = Field(alias="o")


class WordSyncedLine(BaseModel):
    """One word-synced line; times in seconds."""
    start: float = Field(alias="ts")
    end: float = Field(alias="te")
    words: list[SyncedWord] = Field(alias="l")
    text: str = Field(default="", alias="x")


@dataclass
class TimedToken:
    word: str
    timestamp: float | None = None


@dataclass
class DiffRun:
    op: str  # MATCH, REMOVED (line-synced only), ADDED (word-synced only)
    left: list[TimedToken] = field(default_factory=list)
    right: list[TimedToken] = field(default_factory=list)

    @property
    def text(self) -> str:
        tokens = self.left if self.op != "ADDED" else self.right
        return "".join(token.word for token in tokens)


@dataclass
class AlignmentOutcome:
    word_synced: str | None
    line_synced: str | None
    debug_info: dict


def tokenize_word_synced(lines: list[WordSyncedLine]) -> list[TimedToken]:
    """Every word carries its absolute time; each line ends with an untimed line break."""
    tokens = []
    for line in lines:
        for word in line.words:
            tokens.append(TimedToken(word.text, line.start + word.offset))
        tokens.append(TimedToken(LINE_BREAK))
    return tokens


def render_word_synced(lines: list[WordSyncedLine]) -> str:
    """Enhanced LRC: [line start] <word time> word ... <line end>."""
    out = ""
    for line in lines:
        out += f"[{format_time(line.start)}] "
        for word in line.words:
            out += f"<{format_time(line.start + word.offset)}> {word.text} "
        out += f"<{format_time(line.end)}>\n"
    return out


def tokenize_line_synced(lrc_text: str) -> list[TimedToken]:
    """Only the first word of each line carries the line's time."""
    tokens = []
    parsed = parse_lrc(lrc_text)
    for index, line in enumerate(parsed):
        words = line["text"].split(" ")
        for i, word in enumerate(words):
            timestamp = line["startTimeMs"] / 1000 if i == 0 else None
            tokens.append(TimedToken(word, timestamp))
            if i != len(words) - 1:
                tokens.append(TimedToken(" "))
        if index < len(parsed) - 1:
            tokens.append(TimedToken(LINE_BREAK))
    return tokens


def diff_tokens(left: list[TimedToken], right: list[TimedToken]) -> list[DiffRun]:
    """Case-insensitive longest-matching-subsequence diff of two token lists."""
    matcher = SequenceMatcher(
        None,
        [token.word.lower() for token in left],
        [token.word.lower() for token in right],
        autojunk=False,
    )
    runs = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            runs.append(DiffRun("MATCH", left[i1:i2], right[j1:j2]))
            continue
        if i2 > i1:
            runs.append(DiffRun("REMOVED", left=left[i1:i2]))
        if j2 > j1:
            runs.append(DiffRun("ADDED", right=right[j1:j2]))
    return runs


def collect_offsets(runs: list[DiffRun]) -> list[float]:
    samples = []
    for run in runs:
        if run.op != "MATCH":
            continue
        for left, right in zip(run.left, run.right):
            if left.timestamp is not None and right.timestamp is not None:
                samples.append(right.timestamp - left.timestamp)
    return samples


def mean_and_variance(samples: list[float]) -> tuple[float, float]:
    """Mean and population variance."""
    mean = statistics.fmean(samples)
    return mean, statistics.pvariance(samples, mu=mean)


def align(word_lrc: str, word_tokens: list[TimedToken], line_lrc: str | None) -> AlignmentOutcome:
    """
    Validate word-synced lyrics against line-synced lyrics and correct a
    constant offset between them.

    Args:
        word_lrc: Rendered word-synced lyrics
        word_tokens: Tokens of the word-synced lyrics
        line_lrc: Independently timed line-synced lyrics, if any

    Returns:
        AlignmentOutcome; word_synced is None when the alignment is rejected
    """
    if not line_lrc:
        return AlignmentOutcome(word_lrc, None, {"comment": "no synced basic lyrics found"})

    line_tokens = tokenize_line_synced(line_lrc)
    if len(line_tokens) > MAX_TOKENS or len(word_tokens) > MAX_TOKENS:
        return AlignmentOutcome(None, line_lrc, {"comment": "lyrics too long to diff"})

    runs = diff_tokens(line_tokens, word_tokens)
    samples = collect_offsets(runs)
    if not samples:
        return AlignmentOutcome(
            word_lrc, line_lrc, {"comment": "no synced basic lyrics found for validation"}
        )

    mean, variance = mean_and_variance(samples)
    stats = {
        "mean": mean,
        "variance": variance,
        "samples": samples,
        "diff": [{"op": run.op, "text": run.text} for run in runs],
    }

    if variance >= MAX_OFFSET_VARIANCE:
        return AlignmentOutcome(None, line_lrc, {
            "lyricMatchingStats": stats,
            "comment": "basic lyrics matched but variance is too high; using basic lyrics instead",
        })

    return AlignmentOutcome(
        f"[offset:{format_offset(mean)}]\n" + word_lrc,
        line_lrc,
        {"lyricMatchingStats": stats},
    )
