from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional

MAX_FILTER_CITIES = 3

STYLE_LEVELS = ("Beginner", "Improver", "Intermediate", "Advanced", "Teacher/Competitor")

LANGUAGE_CODES = {
    "English": "EN",
    "Spanish": "ES",
    "Italian": "IT",
    "Estonian": "ET",
    "French": "FR",
    "German": "DE",
    "Portuguese": "PT",
    "Russian": "RU",
    "Ukrainian": "UK",
    "Polish": "PL",
    "Swedish": "SV",
    "Finnish": "FI",
}


def language_code(label: str) -> str:
    """``English`` -> ``EN``; unknown labels (and codes) keep their first two letters."""
    return LANGUAGE_CODES.get(label) or label.upper()[:2]


@dataclass
class ProfileFilters:
    country: Optional[str] = None
    cities: list = field(default_factory=list)
    roles: list = field(default_factory=list)
    # style -> required level
    style_levels: dict = field(default_factory=dict)
    other_style: bool = False
    languages: list = field(default_factory=list)
    interest: Optional[str] = None
    availability: Optional[str] = None
    verified_only: bool = False
    my_city_only: bool = False

    def __post_init__(self):
        self.cities = list(self.cities)[:MAX_FILTER_CITIES]


def active_filter_count(filters: ProfileFilters) -> int:
    # "my city only" is a toggle beside the drawer, not one of its filters.
    return sum(
        bool(value)
        for value in (
            filters.country,
            filters.cities,
            filters.roles,
            filters.style_levels,
            filters.other_style,
            filters.languages,
            filters.interest,
            filters.availability,
            filters.verified_only,
        )
    )


def _profile_languages(profile: Mapping) -> set:
    return {language_code(str(item)) for item in profile.get("languages") or []}


def filter_profiles(
    profiles: Iterable[Mapping],
    filters: ProfileFilters,
    my_city: str = "",
) -> list:
    wanted_languages = {language_code(label) for label in filters.languages}
    style_levels = list(filters.style_levels.items())

    def keep(profile: Mapping) -> bool:
        if filters.my_city_only:
            if not my_city or (profile.get("city") or "").lower() != my_city.lower():
                return False
        if filters.country and profile.get("country") != filters.country:
            return False
        if filters.cities and profile.get("city") not in filters.cities:
            return False
        if filters.roles and not any(role in filters.roles for role in profile.get("roles") or []):
            return False
        if style_levels:
            skills = profile.get("dance_skills") or {}
            if not all(skills.get(style) == level for style, level in style_levels):
                return False
        if filters.other_style and not profile.get("other_style"):
            return False
        if wanted_languages and not (_profile_languages(profile) & wanted_languages):
            return False
        if filters.interest and (profile.get("interest") or "") != filters.interest:
            return False
        if filters.availability and (profile.get("availability") or "") != filters.availability:
            return False
        if filters.verified_only and not profile.get("verified"):
            return False
        return True

    return [profile for profile in profiles if keep(profile)]
