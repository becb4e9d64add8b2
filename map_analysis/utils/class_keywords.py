"""Keyword sets used to tell terrain from discrete objects by class name."""

import re
from typing import FrozenSet, Optional

TERRAIN_KEYWORDS: FrozenSet[str] = frozenset({
    "mountain", "hill", "water", "lake", "river", "ocean", "sea", "pond",
    "forest", "woods", "grass", "grassland", "meadow", "field", "plain",
    "plateau", "highland", "valley", "canyon", "ravine", "cliff", "ridge",
    "peak", "beach", "coast", "shore", "desert", "dune", "sand", "snow",
    "ice", "glacier", "swamp", "marsh", "island", "terrain", "land",
})

MAN_MADE_KEYWORDS: FrozenSet[str] = frozenset({
    "building", "house", "tower", "bridge", "road", "path", "fence", "wall",
    "car", "truck", "boat", "ship", "airplane", "train", "bench", "sign",
    "monument", "statue", "windmill", "lighthouse", "dam", "factory", "farm",
    "barn", "church", "castle", "temple", "well", "gate", "streetlight",
    "powerline", "pipeline", "dock", "pier",
})

_TOKEN_PATTERN = re.compile(r"[a-z]+")


def tokenize(class_name: Optional[str]) -> FrozenSet[str]:
    """Lower-cased word tokens of a class name ("Snow_Field" -> {snow, field})."""
    if not class_name:
        return frozenset()
    return frozenset(_TOKEN_PATTERN.findall(class_name.lower()))


def is_terrain_class(class_name: Optional[str]) -> bool:
    return bool(tokenize(class_name) & TERRAIN_KEYWORDS)


def is_man_made_class(class_name: Optional[str]) -> bool:
    return bool(tokenize(class_name) & MAN_MADE_KEYWORDS)
