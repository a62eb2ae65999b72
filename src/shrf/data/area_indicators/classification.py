"""ICD-10 prefix classification of event records.

Categories are defined in a versioned JSON rule file loaded once into an
immutable prefix lookup. A code is matched on its longest declared prefix.
Prefixes listed under ``dual`` contribute half a record to each of their two
categories. Exclusion rules drop records before classification.

Rule file layout::

    {
      "name": "...",
      "version": "...",
      "total_category": "avoidable",            # optional, weight 1.0
      "categories": {"preventable": ["A35", "B20-B24", ...], ...},
      "dual": [{"categories": ["a", "b"], "prefixes": [...]}],
      "exclusions": [{"prefixes": ["C50"], "sex": "m"},
                     {"prefixes": ["C91"], "min_age": 45}]
    }
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING

import pandas as pd
from loguru import logger

from shrf.data.area_indicators.errors import InputContractError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

DEFAULT_RULES = "avoidable_mortality.json"

_RANGE = re.compile(r"^([A-Z])(\d{2})-([A-Z])(\d{2})$")


def normalize_code(code: str) -> str:
    """Upper-case an ICD-10 code and drop dots and spaces."""
    return code.upper().replace(".", "").replace(" ", "")


def _expand_prefixes(patterns: Iterable[str]) -> list[str]:
    """Expand ``A00-A09`` style ranges into three-character prefixes."""
    prefixes = []
    for pattern in patterns:
        pattern = normalize_code(pattern)
        match = _RANGE.match(pattern)
        if match is None:
            if not pattern:
                raise InputContractError("Empty ICD-10 prefix in rule file")
            prefixes.append(pattern)
            continue
        first_letter, first, last_letter, last = match.groups()
        if first_letter != last_letter or int(first) > int(last):
            raise InputContractError(f"Invalid ICD-10 range: {pattern}")
        prefixes.extend(
            f"{first_letter}{n:02d}" for n in range(int(first), int(last) + 1)
        )
    return prefixes


@dataclass(frozen=True)
class Exclusion:
    """Drop records whose code starts with one of ``prefixes``.

    A record is dropped when its sex equals ``sex`` or when its age is not
    known to be below ``min_age``. Conditions left unset do not apply.
    """

    prefixes: tuple[str, ...]
    sex: str | None = None
    min_age: float | None = None
    description: str = ""

    def mask(self, codes: pd.Series, events: pd.DataFrame) -> pd.Series:
        """Boolean mask of the records this rule removes."""
        hit = codes.str.startswith(self.prefixes).fillna(False).astype(bool)
        if self.sex is not None:
            hit &= (events["sex"] == self.sex).fillna(False).astype(bool)
        if self.min_age is not None:
            hit &= ~(events["age"] < self.min_age).fillna(False).astype(bool)
        return hit


@dataclass(frozen=True)
class CategoryRules:
    """Immutable ICD-10 prefix lookup.

    Attributes:
        name: Rule set name
        version: Rule set version, logged with every classification
        categories: Category names in declaration order
        lookup: Prefix to ((category, weight), ...) mapping
        exclusions: Rules applied before classification
        total_category: Category given weight 1.0 for every classified record
    """

    name: str
    version: str
    categories: tuple[str, ...]
    lookup: Mapping[str, tuple[tuple[str, float], ...]]
    exclusions: tuple[Exclusion, ...] = ()
    total_category: str | None = None
    max_prefix_length: int = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "lookup", MappingProxyType(dict(self.lookup)))
        object.__setattr__(
            self, "max_prefix_length", max((len(p) for p in self.lookup), default=0)
        )

    @property
    def output_categories(self) -> tuple[str, ...]:
        if self.total_category is None:
            return self.categories
        return (*self.categories, self.total_category)

    def match(self, code: str) -> tuple[tuple[str, float], ...]:
        """Return the (category, weight) pairs of the longest matching prefix."""
        code = normalize_code(code)
        for length in range(min(len(code), self.max_prefix_length), 0, -1):
            hit = self.lookup.get(code[:length])
            if hit is not None:
                if self.total_category is not None:
                    return (*hit, (self.total_category, 1.0))
                return hit
        return ()


def parse_category_rules(document: Mapping) -> CategoryRules:
    """Build a CategoryRules lookup from a parsed rule document.

    Raises:
        InputContractError: Missing keys, unknown dual categories or a prefix
            declared more than once
    """
    for key in ("name", "version", "categories"):
        if key not in document:
            raise InputContractError(f"Rule file is missing '{key}'")

    categories = tuple(document["categories"])
    lookup: dict[str, tuple[tuple[str, float], ...]] = {}

    def _add(prefix: str, entry: tuple[tuple[str, float], ...]) -> None:
        if prefix in lookup:
            raise InputContractError(
                f"Prefix {prefix} declared more than once "
                f"({lookup[prefix]} and {entry})"
            )
        lookup[prefix] = entry

    for category, patterns in document["categories"].items():
        for prefix in _expand_prefixes(patterns):
            _add(prefix, ((category, 1.0),))

    for group in document.get("dual", []):
        pair = tuple(group.get("categories", ()))
        if len(pair) != 2 or not set(pair) <= set(categories):
            raise InputContractError(
                f"Dual group must name two declared categories, got {pair}"
            )
        for prefix in _expand_prefixes(group.get("prefixes", [])):
            _add(prefix, ((pair[0], 0.5), (pair[1], 0.5)))

    exclusions = []
    for rule in document.get("exclusions", []):
        if "sex" not in rule and "min_age" not in rule:
            raise InputContractError(f"Exclusion needs 'sex' or 'min_age': {rule}")
        exclusions.append(
            Exclusion(
                prefixes=tuple(_expand_prefixes(rule.get("prefixes", []))),
                sex=rule.get("sex"),
                min_age=rule.get("min_age"),
                description=rule.get("description", ""),
            )
        )

    total_category = document.get("total_category")
    if total_category in categories:
        raise InputContractError(
            f"total_category '{total_category}' is also a declared category"
        )

    return CategoryRules(
        name=document["name"],
        version=str(document["version"]),
        categories=categories,
        lookup=lookup,
        exclusions=tuple(exclusions),
        total_category=total_category,
    )


def load_category_rules(path: str | Path | None = None) -> CategoryRules:
    """Load classification rules from ``path`` or the packaged default."""
    if path is None:
        package = resources.files("shrf.data.area_indicators")
        resource = package / "rules" / DEFAULT_RULES
        text = resource.read_text(encoding="utf-8")
        source = f"packaged {DEFAULT_RULES}"
    else:
        text = Path(path).read_text(encoding="utf-8")
        source = str(path)

    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise InputContractError(f"Malformed rule file {source}: {e}") from e

    rules = parse_category_rules(document)
    logger.info(
        "Loaded rules '{}' v{} from {} ({} prefixes, {} exclusions)",
        rules.name,
        rules.version,
        source,
        len(rules.lookup),
        len(rules.exclusions),
    )
    return rules


def classify_events(events: pd.DataFrame, rules: CategoryRules) -> pd.DataFrame:
    """Expand event records into weighted category rows.

    Args:
        events: Event records with at least icd_code, sex and age
        rules: Classification lookup

    Returns:
        One row per (event, matched category) with the event columns plus
        ``category`` and ``weight``. Excluded and unmatched records are
        absent.
    """
    missing = [c for c in ("icd_code", "sex", "age") if c not in events.columns]
    if missing:
        raise InputContractError(f"Event frame is missing columns: {missing}")

    codes = events["icd_code"].astype("string").map(
        normalize_code, na_action="ignore"
    )
    excluded = pd.Series(False, index=events.index)
    for rule in rules.exclusions:
        excluded |= rule.mask(codes, events)
    if excluded.any():
        logger.debug("  Excluded {:,} records by exclusion rules", int(excluded.sum()))

    kept = events[~excluded].assign(_code=codes[~excluded])
    matches = [
        {"_code": code, "category": category, "weight": weight}
        for code in kept["_code"].dropna().unique()
        for category, weight in rules.match(code)
    ]
    mapping = pd.DataFrame(matches, columns=["_code", "category", "weight"])
    classified = kept.merge(mapping, on="_code", how="inner").drop(columns="_code")

    unmatched = len(kept) - kept["_code"].isin(mapping["_code"]).sum()
    logger.debug(
        "  Classified {:,} records into {:,} category rows ({:,} unmatched)",
        len(kept) - unmatched,
        len(classified),
        unmatched,
    )
    return classified
