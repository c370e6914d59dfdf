"""Release title parsing and stream source ordering."""

import re
from typing import Iterable

from streamtui.models import Quality, StreamSource

_QUALITY_PATTERNS = [
    (re.compile(r"2160p|(?<![a-z0-9])4k(?![a-z0-9])", re.IGNORECASE), Quality.UHD_4K),
    (re.compile(r"1080p", re.IGNORECASE), Quality.FHD_1080P),
    (re.compile(r"720p", re.IGNORECASE), Quality.HD_720P),
    (re.compile(r"480p", re.IGNORECASE), Quality.SD_480P),
]

_SIZE_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*(KB|MB|GB|TB)\b", re.IGNORECASE)
_SIZE_UNITS = {"KB": 1024, "MB": 1024 ** 2, "GB": 1024 ** 3, "TB": 1024 ** 4}

_SEEDS_EMOJI_RE = re.compile(r"👤\s*(\d+(?:\.\d+)?)\s*(k)?", re.IGNORECASE)
_SEEDS_LABEL_RE = re.compile(r"seed(?:er)?s?\s*:\s*(\d+)", re.IGNORECASE)


def parse_quality(title: str) -> Quality:
    """Find the best-known resolution tag anywhere in a title."""
    for pattern, quality in _QUALITY_PATTERNS:
        if pattern.search(title or ""):
            return quality
    return Quality.UNKNOWN


def parse_size(title: str) -> int | None:
    """Parse the first `<number><unit>` size in a title into bytes (1024-based)."""
    match = _SIZE_RE.search(title or "")
    if not match:
        return None
    number = float(match.group(1).replace(",", "."))
    return int(number * _SIZE_UNITS[match.group(2).upper()])


def parse_seeds(title: str) -> int:
    """Parse a seeder count like `👤 142`, `👤 1.2k` or `Seeders: 142`; 0 when absent."""
    match = _SEEDS_EMOJI_RE.search(title or "")
    if match:
        count = float(match.group(1))
        if match.group(2):
            count *= 1000
        return int(count)

    match = _SEEDS_LABEL_RE.search(title or "")
    if match:
        return int(match.group(1))
    return 0


def sort_key(source: StreamSource) -> tuple[int, int, str]:
    return source.sort_key()


def rank(sources: Iterable[StreamSource]) -> list[StreamSource]:
    """Order by quality descending, then seeds descending, then info hash ascending."""
    return sorted(sources, key=sort_key)


def filter_min_quality(sources: Iterable[StreamSource], minimum: Quality) -> list[StreamSource]:
    return [s for s in sources if s.quality.rank >= minimum.rank]


def pick_preferred(sources: list[StreamSource], preferred: Quality | None) -> StreamSource | None:
    """
    Pick one source for playback.

    Exact quality matches win; otherwise the closest quality, higher before lower.
    Ties keep the ranked order.
    """
    if not sources:
        return None
    ranked = rank(sources)
    if preferred is None or preferred is Quality.UNKNOWN:
        return ranked[0]

    def distance(source: StreamSource) -> tuple[int, int]:
        diff = source.quality.rank - preferred.rank
        return (abs(diff), 0 if diff >= 0 else 1)

    return min(ranked, key=distance)
