"""
Pytest configuration and shared fixtures for all tests.
"""

import pandas as pd
import pytest

from site_link import as_nested


STATIONS = [
    # id, long, lat, elev, name, region
    ("A", 144.97, -37.81, 31.0, "melbourne", "south"),
    ("B", 151.21, -33.87, 39.0, "sydney", "east"),
    ("C", 153.03, -27.47, 8.0, "brisbane", "east"),
]


@pytest.fixture
def climate_flat():
    """Four daily observations for three stations, one row each."""
    dates = pd.date_range("2020-01-01", periods=4, freq="D")
    rows = []
    for sid, long, lat, elev, name, region in STATIONS:
        for i, date in enumerate(dates):
            rows.append({
                "id": sid, "long": long, "lat": lat, "elev": elev,
                "name": name, "region": region,
                "date": date, "prcp": float(i), "tmax": 20.0 + i + len(name),
            })
    return pd.DataFrame(rows)


@pytest.fixture
def climate(climate_flat):
    return as_nested(climate_flat, key="id", index="date", coords=["long", "lat"])


@pytest.fixture
def make_sites():
    """
    Factory for small nested datasets.

    ``coords`` maps key -> (long, lat); ``series`` maps key -> values
    (default [1, 2, 3]); ``index`` replaces the daily dates.
    """
    def _make(coords, series=None, variable="value", index=None):
        rows = []
        for key, (long, lat) in coords.items():
            values = (series or {}).get(key, [1.0, 2.0, 3.0])
            if index is None:
                idx = pd.date_range("2020-01-01", periods=len(values), freq="D")
            else:
                idx = index[:len(values)]
            for t, v in zip(idx, values):
                rows.append({"id": key, "long": long, "lat": lat, "date": t, variable: v})
        return as_nested(pd.DataFrame(rows), key="id", index="date", coords=["long", "lat"])

    return _make


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as unit test (no external dependencies)"
    )
