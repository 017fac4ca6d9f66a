"""
SRT lyric parsing and lookup by playback offset
"""
import re
from dataclasses import dataclass
from typing import List, Optional

_TIME_RE = re.compile(r"(\d{2}:\d{2}:\d{2}[,.]\d{3}) --> (\d{2}:\d{2}:\d{2}[,.]\d{3})")
_BLOCK_SPLIT_RE = re.compile(r"\n\s*\n")


@dataclass(frozen=True)
class LyricLine:
    start: float
    end: float
    text: str

    def to_dict(self) -> dict:
        return {"start": self.start, "end": self.end, "text": self.text}


def _to_seconds(stamp: str) -> float:
    hh, mm, rest = stamp.split(":")
    ss, ms = rest.replace(".", ",").split(",")
    return int(hh) * 3600 + int(mm) * 60 + int(ss) + int(ms) / 1000.0


def parse_srt(data: str) -> List[LyricLine]:
    lines_out = []
    for block in _BLOCK_SPLIT_RE.split(data.replace("\r\n", "\n")):
        lines = [line.strip() for line in block.split("\n") if line.strip()]
        if len(lines) < 2:
            continue
        time_idx = next((i for i, line in enumerate(lines) if "-->" in line), None)
        if time_idx is None:
            continue
        match = _TIME_RE.search(lines[time_idx])
        if not match:
            continue
        text = "\n".join(lines[time_idx + 1:])
        if text:
            lines_out.append(LyricLine(
                start=_to_seconds(match.group(1)),
                end=_to_seconds(match.group(2)),
                text=text,
            ))
    return lines_out


def active_line(lines: List[LyricLine], offset: float) -> Optional[LyricLine]:
    """The lyric shown at `offset` seconds, if any"""
    for line in lines:
        if line.start <= offset < line.end:
            return line
    return None
