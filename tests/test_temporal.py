"""
Tests for peak extraction and temporal matching.
"""

import numpy as np
import pandas as pd
import pytest

from site_link import (
    InvalidOptionError,
    ShapeMismatchError,
    SitePair,
    UnmatchedKeyError,
    count_matches,
    find_peaks,
    match_temporal,
    to_long,
)


def spiky(peaks, length=30):
    """Series of small varying values with the given {position: value} spikes."""
    values = [0.01 * (i % 3) for i in range(length)]
    for pos, value in peaks.items():
        values[pos] = value
    return values


@pytest.fixture
def river(make_sites):
    """Major side: one gauge, water level peaking on days 3, 10 and 17."""
    return make_sites(
        {"gauge": (145.0, -37.0)},
        series={"gauge": spiky({3: 10.0, 10: 9.0, 17: 8.0})},
        variable="level",
    )


@pytest.fixture
def rain(make_sites):
    """Minor side: one station, rain peaking on days 4, 9 and 25."""
    return make_sites(
        {"station": (145.01, -37.0)},
        series={"station": spiky({4: 5.0, 9: 6.0, 25: 7.0})},
        variable="prcp",
    )


@pytest.fixture
def pair():
    return SitePair(major="gauge", minor="station", distance_km=0.9, group=1)


class TestCountMatches:
    """Interval membership of dependent peaks."""

    def test_example(self):
        assert count_matches(np.array([3, 10, 17]), np.array([4, 9, 25]), 4) == 2

    def test_overlapping_intervals_count_once(self):
        assert count_matches(np.array([3, 4]), np.array([4]), 4) == 1

    def test_interval_bounds_inclusive(self):
        assert count_matches(np.array([10]), np.array([8, 12, 13]), 4) == 2

    def test_dates_use_days(self):
        independent = pd.to_datetime(["2020-01-04", "2020-01-11"]).to_numpy()
        dependent = pd.to_datetime(["2020-01-05", "2020-01-20"]).to_numpy()

        assert count_matches(independent, dependent, 4) == 1
        assert count_matches(independent, dependent, pd.Timedelta(hours=12)) == 0

    def test_empty(self):
        assert count_matches(np.array([]), np.array([1, 2]), 4) == 0

    def test_mixed_index_types(self):
        dates = pd.to_datetime(["2020-01-04"]).to_numpy()

        with pytest.raises(ShapeMismatchError):
            count_matches(dates, np.array([4]), 4)


class TestFindPeaks:
    """Selection of the largest values of a series."""

    def test_ties_go_to_earliest_index(self):
        obs = pd.DataFrame({"t": [0, 1, 2, 3, 4], "v": [1.0, 5.0, 3.0, 5.0, 2.0]})

        assert find_peaks(obs, "t", "v", 2).tolist() == [1, 3]
        assert find_peaks(obs, "t", "v", 3).tolist() == [1, 3, 2]

    def test_missing_values_skipped(self):
        obs = pd.DataFrame({"t": [0, 1, 2], "v": [np.nan, 1.0, 2.0]})

        assert find_peaks(obs, "t", "v", 5).tolist() == [2, 1]


class TestMatchTemporal:
    """Peak agreement across matched pairs."""

    def test_example(self, river, rain, pair):
        out = match_temporal(
            [pair], river, rain, by={"prcp": "level"}, n_highest=3, window=4
        )

        assert len(out) == 1
        assert out[0].match_count == 2
        assert out[0].major == "gauge"
        assert out[0].distance_km == 0.9

    def test_minor_as_independent(self, river, rain, pair):
        out = match_temporal(
            [pair], river, rain, by={"prcp": "level"},
            independent="minor", n_highest=3, window=4
        )

        assert out[0].match_count == 2

    def test_min_match_drops_pair(self, river, rain, pair):
        out = match_temporal(
            [pair], river, rain, by={"prcp": "level"}, n_highest=3, window=4, min_match=3
        )

        assert out == []

    def test_count_bounded_by_n_highest(self, river, rain, pair):
        for n in (1, 3, 10, 40):
            out = match_temporal([pair], river, rain, by={"prcp": "level"}, n_highest=n)
            assert 0 <= out[0].match_count <= n

    def test_period_window_counts_periods(self, make_sites, pair):
        months = pd.period_range("2020-01", periods=30, freq="M")
        major = make_sites(
            {"gauge": (145.0, -37.0)},
            series={"gauge": spiky({3: 10.0, 10: 9.0, 17: 8.0})},
            variable="level",
            index=months,
        )
        minor = make_sites(
            {"station": (145.01, -37.0)},
            series={"station": spiky({4: 5.0, 9: 6.0, 25: 7.0})},
            variable="prcp",
            index=months,
        )

        out = match_temporal(
            [pair], major, minor, by={"prcp": "level"}, n_highest=3, window=4
        )

        assert out[0].match_count == 2

    def test_period_index_rejects_timedelta_window(self, make_sites, pair):
        months = pd.period_range("2020-01", periods=30, freq="M")
        major = make_sites(
            {"gauge": (145.0, -37.0)}, series={"gauge": spiky({3: 1.0})},
            variable="level", index=months,
        )
        minor = make_sites(
            {"station": (145.01, -37.0)}, series={"station": spiky({4: 1.0})},
            variable="prcp", index=months,
        )

        with pytest.raises(InvalidOptionError):
            match_temporal(
                [pair], major, minor, by={"prcp": "level"}, window=pd.Timedelta(days=60)
            )

    def test_accepts_long_datasets(self, river, rain, pair):
        out = match_temporal(
            [pair], to_long(river), to_long(rain), by={"prcp": "level"}, n_highest=3, window=4
        )

        assert out[0].match_count == 2

    def test_shared_variable_without_by(self, make_sites, pair):
        major = make_sites({"gauge": (0.0, 0.0)}, series={"gauge": spiky({3: 1.0})})
        minor = make_sites({"station": (0.0, 0.0)}, series={"station": spiky({4: 1.0})})

        out = match_temporal([pair], major, minor, n_highest=1, window=4)

        assert out[0].match_count == 1

    def test_no_shared_variable(self, river, rain, pair):
        with pytest.raises(InvalidOptionError):
            match_temporal([pair], river, rain)

    def test_unknown_site(self, river, rain):
        stray = SitePair(major="gauge", minor="elsewhere", distance_km=1.0, group=1)

        with pytest.raises(UnmatchedKeyError):
            match_temporal([stray], river, rain, by={"prcp": "level"})

    def test_index_type_mismatch(self, river, make_sites, pair):
        numeric = make_sites(
            {"station": (145.01, -37.0)},
            series={"station": spiky({4: 5.0})},
            variable="prcp",
            index=list(range(30)),
        )

        with pytest.raises(ShapeMismatchError):
            match_temporal([pair], river, numeric, by={"prcp": "level"})

    @pytest.mark.parametrize("options", [
        {"independent": "both"},
        {"n_highest": 0},
        {"window": 0},
        {"min_match": -1},
        {"by": {"prcp": "level", "tmax": "level"}},
    ])
    def test_invalid_options(self, river, rain, pair, options):
        options.setdefault("by", {"prcp": "level"})

        with pytest.raises(InvalidOptionError):
            match_temporal([pair], river, rain, **options)
