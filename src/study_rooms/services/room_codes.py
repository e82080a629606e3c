"""Room code generation and normalization."""

import random
import re
from dataclasses import dataclass, field

FIRST_WORDS: tuple[str, ...] = (
    "AMBER", "BOLD", "BRAVE", "BRIGHT", "BRISK", "CALM", "CLEVER", "COSMIC",
    "CRISP", "CURIOUS", "DARING", "EAGER", "FANCY", "FIERCE", "GENTLE", "GIANT",
    "GOLDEN", "GRAND", "HAPPY", "HUMBLE", "JOLLY", "KEEN", "LAZY", "LIVELY",
    "LUCKY", "MELLOW", "MERRY", "MIGHTY", "NIMBLE", "NOBLE", "PLUCKY", "PROUD",
    "QUICK", "QUIET", "RAPID", "ROYAL", "RUSTY", "SHINY", "SILENT", "SILVER",
    "SPARK", "STEADY", "SUNNY", "SWIFT", "TIDY", "VIVID", "WISE", "ZESTY",
)

SECOND_WORDS: tuple[str, ...] = (
    "ACORN", "ANCHOR", "APPLE", "ARROW", "BADGER", "BEACON", "BIRCH", "BRIDGE",
    "CANYON", "CASTLE", "CEDAR", "CLOUD", "COMET", "CORAL", "CUP", "DELTA",
    "DUNE", "EAGLE", "EMBER", "FALCON", "FERN", "FOX", "GARDEN", "GLACIER",
    "HARBOR", "HAWK", "ISLAND", "LANTERN", "MAPLE", "MEADOW", "MOON", "OTTER",
    "PEBBLE", "PINE", "PLANET", "PRISM", "RAVEN", "RIVER", "ROCKET", "SPROUT",
    "STONE", "SUMMIT", "THUNDER", "TREE", "VALLEY", "WAVE", "WILLOW", "ZEPHYR",
)

ROOM_CODE_PATTERN = re.compile(r"^[A-Z]+-[A-Z]+-[0-9]{2}$")


@dataclass
class RoomCodeGenerator:
    """Produces memorable WORD-WORD-NN codes from an injectable random source."""

    rng: random.Random = field(default_factory=random.SystemRandom)
    first_words: tuple[str, ...] = FIRST_WORDS
    second_words: tuple[str, ...] = SECOND_WORDS

    def generate(self) -> str:
        """Return a random room code; uniqueness is checked by the caller."""
        first = self.rng.choice(self.first_words)
        second = self.rng.choice(self.second_words)
        suffix = self.rng.randint(10, 99)
        return f"{first}-{second}-{suffix}"

    @property
    def keyspace(self) -> int:
        return len(self.first_words) * len(self.second_words) * 90


def normalize_room_code(raw: str | None) -> str | None:
    """Uppercase a user-typed code and return it only if well-formed."""
    if raw is None:
        return None
    cleaned = raw.strip().upper()
    if not ROOM_CODE_PATTERN.match(cleaned):
        return None
    return cleaned
