from __future__ import annotations

import pytest

from clipstudio.media.ladder import (
    DEFAULT_TIER,
    dimensions_for,
    is_known_tier,
    missing_targets,
    normalize_tier,
)


def test_missing_targets_excludes_existing_tiers_in_ladder_order() -> None:
    assert missing_targets("4k", {"720p"}) == ["1080p"]
    assert missing_targets("4k", []) == ["1080p", "720p"]
    assert missing_targets("4k", ["720p", "1080p"]) == []


def test_lowest_tier_has_nothing_to_generate() -> None:
    assert missing_targets("720p", []) == []


def test_unknown_tier_is_treated_as_nothing_to_generate() -> None:
    assert missing_targets("8k", []) == []
    assert not is_known_tier("8k")


@pytest.mark.parametrize("value", [None, "", "   "])
def test_blank_source_resolution_defaults_to_1080p(value) -> None:
    assert normalize_tier(value) == DEFAULT_TIER
    assert missing_targets(normalize_tier(value), []) == ["720p"]


def test_normalize_tier_is_case_insensitive() -> None:
    assert normalize_tier(" 4K ") == "4k"


def test_dimensions_for_known_and_unknown_tiers() -> None:
    assert dimensions_for("1080p") == (1920, 1080)
    assert dimensions_for("720p") == (1280, 720)
    with pytest.raises(KeyError):
        dimensions_for("480p")
