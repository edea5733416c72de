"""Resolution ladder and missing-rendition computation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

__all__ = [
    "DEFAULT_TIER",
    "LadderEntry",
    "RESOLUTION_LADDER",
    "dimensions_for",
    "is_known_tier",
    "missing_targets",
    "normalize_tier",
]


DEFAULT_TIER = "1080p"


@dataclass(frozen=True)
class LadderEntry:
    """Frame size of a tier and the lower tiers generated from it."""

    width: int
    height: int
    generates: Tuple[str, ...] = ()


# Ordered highest to lowest; ``generates`` lists cascade targets in the order
# they should be produced.
RESOLUTION_LADDER: Dict[str, LadderEntry] = {
    "4k": LadderEntry(width=3840, height=2160, generates=("1080p", "720p")),
    "1080p": LadderEntry(width=1920, height=1080, generates=("720p",)),
    "720p": LadderEntry(width=1280, height=720),
}


def normalize_tier(value: Optional[str]) -> str:
    """Return the tier name for *value*, defaulting blank values to 1080p."""

    if value is None:
        return DEFAULT_TIER
    cleaned = value.strip().lower()
    return cleaned or DEFAULT_TIER


def is_known_tier(tier: str) -> bool:
    return tier in RESOLUTION_LADDER


def dimensions_for(tier: str) -> Tuple[int, int]:
    """Return ``(width, height)`` for *tier*; raises ``KeyError`` when unknown."""

    entry = RESOLUTION_LADDER[tier]
    return entry.width, entry.height


def missing_targets(source_tier: str, existing_tiers: Iterable[str]) -> List[str]:
    """Return the cascade tiers of *source_tier* not present in *existing_tiers*.

    Unknown tiers and tiers without a cascade yield an empty list, meaning
    there is nothing to generate. Ladder order is preserved.
    """

    entry = RESOLUTION_LADDER.get(source_tier)
    if entry is None or not entry.generates:
        return []
    existing = set(existing_tiers)
    return [tier for tier in entry.generates if tier not in existing]
