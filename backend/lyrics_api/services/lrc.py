"""
LRC helpers shared by the providers and the alignment engine.
LRC format: [mm:ss.xx]lyrics text
"""
import re

_LRC_LINE = re.compile(r"\[(\d{2,}):(\d{2})\.(\d{2,3})\](.*)")


def parse_lrc(lrc_text: str) -> list[dict]:
    """
    Parse LRC text into synced lines.

    Returns:
        list of {text, startTimeMs, endTimeMs}; lines without text and tag
        lines ([ar:...], [offset:...]) are skipped.
    """
    lines = []

    for line in lrc_text.strip().split("\n"):
        match = _LRC_LINE.match(line.strip())
        if not match:
            continue
        minutes = int(match.group(1))
        seconds = int(match.group(2))
        fraction = match.group(3)
        # Handle both .xx (centiseconds) and .xxx (milliseconds)
        ms = int(fraction) * 10 if len(fraction) == 2 else int(fraction)
        text = match.group(4).strip()

        if text:
            lines.append({
                "text": text,
                "startTimeMs": (minutes * 60 + seconds) * 1000 + ms,
                "endTimeMs": None,
            })

    for i in range(len(lines) - 1):
        lines[i]["endTimeMs"] = lines[i + 1]["startTimeMs"]

    # Last line: estimate 5 seconds duration
    if lines:
        lines[-1]["endTimeMs"] = lines[-1]["startTimeMs"] + 5000

    return lines


def format_time(seconds: float) -> str:
    """Format seconds as mm:ss.xx."""
    total = round(seconds * 100)
    minutes, rest = divmod(total, 6000)
    secs, hundredths = divmod(rest, 100)
    return f"{minutes:02d}:{secs:02d}.{hundredths:02d}"


def format_offset(offset: float) -> str:
    """Signed offset for an [offset:...] tag, '+' for positive values."""
    if offset > 0:
        return f"+{offset}"
    return f"{offset}"
