from conxion.core.profile_filters import (
    MAX_FILTER_CITIES,
    ProfileFilters,
    active_filter_count,
    filter_profiles,
    language_code,
)

PROFILES = [
    {
        "user_id": "ana", "city": "Tallinn", "country": "Estonia", "roles": ["Leader"],
        "languages": ["English", "ET"], "dance_skills": {"salsa": "Advanced"},
        "verified": True, "interest": "Practice", "availability": "Weekends",
    },
    {
        "user_id": "bo", "city": "Tartu", "country": "Estonia", "roles": ["Follower"],
        "languages": ["Spanish"], "dance_skills": {"salsa": "Beginner", "bachata": "Improver"},
        "other_style": True,
    },
    {
        "user_id": "cy", "city": "Riga", "country": "Latvia", "roles": ["Leader", "Follower"],
        "languages": ["Russian"], "dance_skills": {},
    },
]


def ids(profiles):
    return [profile["user_id"] for profile in profiles]


class TestProfileFilters:

    def test_no_filters_keeps_everyone(self):
        assert ids(filter_profiles(PROFILES, ProfileFilters())) == ["ana", "bo", "cy"]
        assert active_filter_count(ProfileFilters()) == 0

    def test_country_and_cities(self):
        assert ids(filter_profiles(PROFILES, ProfileFilters(country="Estonia"))) == ["ana", "bo"]
        assert ids(filter_profiles(PROFILES, ProfileFilters(cities=["Riga", "Tartu"]))) == ["bo", "cy"]

    def test_cities_are_capped(self):
        filters = ProfileFilters(cities=["A", "B", "C", "Riga"])
        assert len(filters.cities) == MAX_FILTER_CITIES
        assert filter_profiles(PROFILES, filters) == []

    def test_roles_any_of(self):
        assert ids(filter_profiles(PROFILES, ProfileFilters(roles=["Follower"]))) == ["bo", "cy"]

    def test_style_levels_must_all_match(self):
        exact = ProfileFilters(style_levels={"salsa": "Beginner", "bachata": "Improver"})
        partial = ProfileFilters(style_levels={"salsa": "Beginner", "bachata": "Advanced"})
        assert ids(filter_profiles(PROFILES, exact)) == ["bo"]
        assert filter_profiles(PROFILES, partial) == []

    def test_languages_by_code(self):
        assert language_code("Estonian") == "ET"
        assert language_code("Dutch") == "DU"
        assert ids(filter_profiles(PROFILES, ProfileFilters(languages=["Estonian", "Russian"]))) == ["ana", "cy"]
        assert ids(filter_profiles(PROFILES, ProfileFilters(languages=["ES"]))) == ["bo"]

    def test_flags(self):
        assert ids(filter_profiles(PROFILES, ProfileFilters(verified_only=True))) == ["ana"]
        assert ids(filter_profiles(PROFILES, ProfileFilters(other_style=True))) == ["bo"]
        assert ids(filter_profiles(PROFILES, ProfileFilters(interest="Practice", availability="Weekends"))) == ["ana"]

    def test_my_city_only(self):
        filters = ProfileFilters(my_city_only=True)
        assert ids(filter_profiles(PROFILES, filters, my_city="tallinn")) == ["ana"]
        assert filter_profiles(PROFILES, filters, my_city="") == []
        # The toggle is not counted as a drawer filter
        assert active_filter_count(filters) == 0

    def test_active_filter_count(self):
        filters = ProfileFilters(country="Estonia", roles=["Leader"], languages=["English"], verified_only=True)
        assert active_filter_count(filters) == 4
