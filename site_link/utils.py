from typing import Dict, Hashable, Iterable, List, Sequence, Tuple

import numpy as np
import pandas as pd
import pymap3d as pm

from .errors import MissingRequiredFieldError


def require_columns(frame: pd.DataFrame, names: Iterable[str], what: str = "table"):
    """Raise MissingRequiredFieldError naming every absent column."""
    missing = [n for n in dict.fromkeys(names) if n not in frame.columns]
    if missing:
        raise MissingRequiredFieldError(
            f"{what} is missing required column(s): {', '.join(map(str, missing))}"
        )


def factorize_keys(values) -> Tuple[np.ndarray, np.ndarray]:
    """
    Integer codes (first-appearance order) for a column of key values.

    Works on the raw ndarray so tuple keys stay tuples instead of
    being expanded into a MultiIndex. Missing keys get code -1.
    """
    if not isinstance(values, pd.Series):
        values = pd.Series(list(values), dtype=object)
    return pd.factorize(values.to_numpy())


def group_positions(values: pd.Series) -> Dict[Hashable, np.ndarray]:
    """
    Map each distinct value to the row positions holding it.

    Groups are ordered by first appearance, positions inside a group
    keep the row order.
    """
    codes, uniques = factorize_keys(values)
    if (codes < 0).any():
        raise MissingRequiredFieldError(f"column '{values.name}' has missing values")
    if not len(uniques):
        return {}

    order = np.argsort(codes, kind="stable")
    bounds = np.cumsum(np.bincount(codes, minlength=len(uniques)))[:-1]
    chunks = np.split(order, bounds)

    raw = values.tolist()
    return {raw[chunk[0]]: chunk for chunk in chunks}


def object_column(values: Sequence) -> np.ndarray:
    """1-D object array holding each value as-is (nested DataFrames, tuples)."""
    out = np.empty(len(values), dtype=object)
    for i, value in enumerate(values):
        out[i] = value
    return out


def nested_columns(frame: pd.DataFrame) -> List[str]:
    """Columns whose cells hold DataFrames."""
    found = []
    for name in frame.columns:
        col = frame[name]
        if col.dtype != object or not len(col):
            continue
        if col.map(lambda v: isinstance(v, pd.DataFrame)).any():
            found.append(name)
    return found


def site_coords(frame: pd.DataFrame, coords: Tuple[str, str]) -> Tuple[np.ndarray, np.ndarray]:
    """Numeric (longitude, latitude) arrays in degrees."""
    require_columns(frame, coords, "site table")

    out = []
    for name in coords:
        try:
            values = pd.to_numeric(frame[name], errors="raise").to_numpy(dtype=float)
        except (TypeError, ValueError) as e:
            raise MissingRequiredFieldError(f"coordinate '{name}' is not numeric") from e
        if np.isnan(values).any():
            raise MissingRequiredFieldError(f"coordinate '{name}' has missing values")
        out.append(values)

    lon, lat = out
    return lon, lat


def geo_coord2xyz(lon: np.ndarray, lat: np.ndarray) -> np.ndarray:
    """Convert geodetic coords to ECEF (WGS84) on the ellipsoid surface, in kilometers."""
    x_m, y_m, z_m = pm.geodetic2ecef(
        np.asarray(lat, dtype=float),
        np.asarray(lon, dtype=float),
        np.zeros(len(lat))
    )

    # Store ECEF in km
    return np.column_stack([x_m, y_m, z_m]) / 1000.0
