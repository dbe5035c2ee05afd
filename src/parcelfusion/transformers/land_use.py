"""
Land Use Categorization

Maps free-text use descriptions onto the closed category set with an
ordered rule table. Rules are evaluated top to bottom and the first rule with
a matching pattern wins, so the table order is the precedence for ambiguous
text such as "Residential / Commercial Retail" (retail, not mixed use).
"""
import re
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Sequence, Tuple

from src.parcelfusion.models.parcel import LandUseCategory


@dataclass(frozen=True)
class LandUseRule:
    """One (category, patterns) entry of the rule table."""

    category: LandUseCategory
    patterns: Tuple[re.Pattern, ...]

    @classmethod
    def from_strings(cls, category: LandUseCategory, patterns: Iterable[str]) -> "LandUseRule":
        return cls(category, tuple(re.compile(p, re.IGNORECASE) for p in patterns))

    def matches(self, text: str) -> bool:
        return any(p.search(text) for p in self.patterns)


DEFAULT_LAND_USE_RULES: Tuple[LandUseRule, ...] = (
    LandUseRule.from_strings(LandUseCategory.SINGLE_FAMILY, [
        r"single\s*family", r"\bSFR\b", r"\bSFD\b", r"detached",
        r"^1\s*family", r"residential.*single",
    ]),
    LandUseRule.from_strings(LandUseCategory.MULTI_FAMILY, [
        r"multi\s*family", r"\bMFR\b", r"apartment", r"condo", r"duplex",
        r"triplex", r"\d+\s*units", r"flats?", r"residential.*multi",
    ]),
    LandUseRule.from_strings(LandUseCategory.RETAIL, [
        r"retail", r"store", r"shop", r"commercial.*retail", r"shopping",
        r"restaurant", r"food\s*service",
    ]),
    LandUseRule.from_strings(LandUseCategory.OFFICE, [
        r"office", r"professional", r"commercial.*office", r"business\s*park",
    ]),
    LandUseRule.from_strings(LandUseCategory.INDUSTRIAL, [
        r"industrial", r"warehouse", r"manufacturing", r"factory",
        r"distribution", r"light\s*industrial", r"heavy\s*industrial",
    ]),
    LandUseRule.from_strings(LandUseCategory.HOTEL, [
        r"hotel", r"motel", r"lodging", r"hospitality", r"inn\b",
    ]),
    LandUseRule.from_strings(LandUseCategory.GOVERNMENT, [
        r"government", r"public", r"municipal", r"federal", r"state\s*owned",
        r"civic", r"school", r"library", r"fire\s*station", r"police",
        r"hospital",
    ]),
    LandUseRule.from_strings(LandUseCategory.MIXED_USE, [
        r"mixed\s*use", r"live.work", r"residential.*commercial",
    ]),
    LandUseRule.from_strings(LandUseCategory.VACANT, [
        r"vacant", r"undeveloped", r"bare\s*land", r"empty\s*lot",
    ]),
)

CATEGORY_COLORS: Dict[LandUseCategory, str] = {
    LandUseCategory.SINGLE_FAMILY: "#3498db",
    LandUseCategory.MULTI_FAMILY: "#9b59b6",
    LandUseCategory.RETAIL: "#e74c3c",
    LandUseCategory.OFFICE: "#e67e22",
    LandUseCategory.INDUSTRIAL: "#7f8c8d",
    LandUseCategory.HOTEL: "#f39c12",
    LandUseCategory.GOVERNMENT: "#27ae60",
    LandUseCategory.MIXED_USE: "#1abc9c",
    LandUseCategory.VACANT: "#bdc3c7",
    LandUseCategory.OTHER: "#95a5a6",
}

CATEGORY_LABELS: Dict[LandUseCategory, str] = {
    LandUseCategory.SINGLE_FAMILY: "Single Family Residential",
    LandUseCategory.MULTI_FAMILY: "Multi-Family Residential",
    LandUseCategory.RETAIL: "Commercial Retail",
    LandUseCategory.OFFICE: "Commercial Office",
    LandUseCategory.INDUSTRIAL: "Industrial",
    LandUseCategory.HOTEL: "Commercial Hotel",
    LandUseCategory.GOVERNMENT: "Government",
    LandUseCategory.MIXED_USE: "Mixed-Use",
    LandUseCategory.VACANT: "Vacant",
    LandUseCategory.OTHER: "Other",
}


class LandUseClassifier:
    """
    Categorizes land-use text for one source.

    Exact-match overrides (e.g. a provider's numeric use codes) are consulted
    before the rule table.
    """

    def __init__(
        self,
        rules: Sequence[LandUseRule] = DEFAULT_LAND_USE_RULES,
        overrides: Optional[Dict[str, LandUseCategory]] = None
    ):
        self.rules = tuple(rules)
        self.overrides = {
            key.strip(): LandUseCategory(value)
            for key, value in (overrides or {}).items()
        }

    def categorize(self, land_use: Optional[str]) -> LandUseCategory:
        if land_use is None:
            return LandUseCategory.OTHER

        text = str(land_use).strip()
        if not text:
            return LandUseCategory.OTHER

        if text in self.overrides:
            return self.overrides[text]

        for rule in self.rules:
            if rule.matches(text):
                return rule.category
        return LandUseCategory.OTHER


_default_classifier = LandUseClassifier()


def categorize_land_use(land_use: Optional[str]) -> LandUseCategory:
    """Categorize text with the default rule table."""
    return _default_classifier.categorize(land_use)


def category_color(category: LandUseCategory) -> str:
    return CATEGORY_COLORS.get(category, CATEGORY_COLORS[LandUseCategory.OTHER])


def category_label(category: LandUseCategory) -> str:
    return CATEGORY_LABELS.get(category, CATEGORY_LABELS[LandUseCategory.OTHER])
