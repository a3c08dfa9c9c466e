"""
Payee name normalization and merchant alias resolution.
"""

import re
from pathlib import Path
from typing import Optional, Union

import yaml

from config.logging import logger
from config.settings import settings
from payee_engine.errors import ConfigError

_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize(name: Optional[str]) -> str:
    """
    Normalize a payee name for comparison.

    Lowercases, turns punctuation into spaces, collapses runs of whitespace
    and trims. Applying it twice gives the same result as applying it once.
    """
    if not name:
        return ""
    normalized = _NON_WORD.sub(" ", name.lower())
    return _WHITESPACE.sub(" ", normalized).strip()


def load_alias_table(path: Optional[Union[str, Path]] = None) -> dict[str, list[str]]:
    """
    Load the merchant alias table (canonical name -> variants) from YAML.

    Raises:
        ConfigError: If the file is missing or not a mapping of lists
    """
    path = Path(path or settings.PAYEE_ALIASES_PATH)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot load payee alias table from {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Payee alias table {path} must be a mapping")

    table = {}
    for canonical, variants in data.items():
        if variants is None:
            variants = []
        if not isinstance(variants, list):
            raise ConfigError(
                f"Aliases for '{canonical}' in {path} must be a list",
                {"canonical": canonical},
            )
        table[str(canonical)] = [str(v) for v in variants]
    return table


class PayeeAliasResolver:
    """
    Maps known merchant-name variants onto one canonical name.

    Lookup is exact first, then prefix tolerant in both directions:
    "amzn mktp us 2k3" starts with the alias "amzn mktp", and the truncated
    "mcdona" is a prefix of "mcdonalds". Bank strings often glue the merchant
    to a suffix ("netflixcom"), so the forward direction needs no word
    boundary. The reverse direction needs at least MIN_PREFIX_LENGTH
    characters so a stray "a" does not match every alias.
    """

    MIN_PREFIX_LENGTH = 3

    def __init__(self, aliases: Optional[dict[str, list[str]]] = None):
        """
        Args:
            aliases: Canonical name -> variants. Loaded from
                settings.PAYEE_ALIASES_PATH when omitted.
        """
        if aliases is None:
            aliases = load_alias_table()

        self._alias_map: dict[str, str] = {}
        for canonical, variants in aliases.items():
            normalized_canonical = normalize(canonical)
            if not normalized_canonical:
                continue
            for variant in variants:
                key = normalize(variant)
                if key:
                    self._alias_map[key] = normalized_canonical
            self._alias_map[normalized_canonical] = normalized_canonical

        # Longest keys first so "amzn mktp" wins over "amzn"
        self._prefix_keys = sorted(self._alias_map, key=lambda k: (-len(k), k))
        logger.debug(f"Loaded {len(self._alias_map)} payee alias keys")

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "PayeeAliasResolver":
        return cls(load_alias_table(path))

    def __len__(self) -> int:
        return len(self._alias_map)

    def canonicalize(self, name: Optional[str]) -> str:
        """Return the canonical merchant name, or the normalized name if unknown."""
        normalized = normalize(name)
        if not normalized:
            return ""

        canonical = self._alias_map.get(normalized)
        if canonical:
            return canonical

        for alias in self._prefix_keys:
            if normalized.startswith(alias):
                return self._alias_map[alias]
            if len(normalized) >= self.MIN_PREFIX_LENGTH and alias.startswith(normalized):
                return self._alias_map[alias]

        return normalized
