from dataclasses import dataclass, field, replace
from numbers import Integral, Real
from types import MappingProxyType
from typing import Dict, Hashable, List, Literal, Mapping, Optional, Tuple, Union

import pandas as pd
from geographiclib.geodesic import Geodesic

from .errors import (
    DuplicateKeyError,
    InvalidOptionError,
    MissingRequiredFieldError,
    ShapeMismatchError,
)
from .utils import factorize_keys, require_columns


# nested payload columns
TS = "ts"
VAL = ".val"


# ----- config -----
class GeoModel:
    """Reference ellipsoid used for every site distance."""
    GEOD = Geodesic.WGS84
    M_PER_KM = 1000.0

    @staticmethod
    def inverse_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        """Geodesic distance (km) between two points on the ellipsoid."""
        res = GeoModel.GEOD.Inverse(lat1, lon1, lat2, lon2, Geodesic.DISTANCE)
        return res["s12"] / GeoModel.M_PER_KM


def _is_int(value) -> bool:
    return isinstance(value, Integral) and not isinstance(value, bool)


@dataclass(frozen=True)
class MatchOptions:
    """
    Options shared by spatial matching, temporal matching and
    ``match_sites``. Values are validated on construction.
    """
    # spatial
    n_keep: int = 1
    dist_max: float = 10.0  # km
    single_match: bool = False
    method: Literal["full", "kdtree"] = "full"

    # temporal
    temporal: bool = False
    by: Optional[Mapping[str, str]] = None  # {minor variable: major variable}
    independent: Literal["major", "minor"] = "major"
    n_highest: int = 20
    window: Union[float, pd.Timedelta] = 5
    min_match: int = 0

    # output
    mode: Literal["match", "unmatch"] = "match"

    def __post_init__(self):
        if not _is_int(self.n_keep) or self.n_keep < 1:
            raise InvalidOptionError(f"n_keep must be an integer >= 1, got {self.n_keep!r}")
        if not isinstance(self.dist_max, Real) or isinstance(self.dist_max, bool) \
                or not self.dist_max >= 0:
            raise InvalidOptionError(f"dist_max must be a number >= 0, got {self.dist_max!r}")
        if self.method not in ("full", "kdtree"):
            raise InvalidOptionError(
                f"Invalid 'method': {self.method!r}. Expected 'full' or 'kdtree'."
            )
        if self.by is not None:
            if not isinstance(self.by, Mapping) or len(self.by) != 1:
                raise InvalidOptionError(
                    "by must map exactly one minor variable to one major variable"
                )
            for name, target in self.by.items():
                if not isinstance(name, str) or not isinstance(target, str):
                    raise InvalidOptionError(f"by must map column names, got {dict(self.by)!r}")
        if self.independent not in ("major", "minor"):
            raise InvalidOptionError(
                f"Invalid 'independent': {self.independent!r}. Expected 'major' or 'minor'."
            )
        if not _is_int(self.n_highest) or self.n_highest < 1:
            raise InvalidOptionError(
                f"n_highest must be an integer >= 1, got {self.n_highest!r}"
            )
        if isinstance(self.window, pd.Timedelta):
            if self.window <= pd.Timedelta(0):
                raise InvalidOptionError(f"window must be positive, got {self.window!r}")
        elif not isinstance(self.window, Real) or isinstance(self.window, bool) \
                or not self.window > 0:
            raise InvalidOptionError(f"window must be a number > 0, got {self.window!r}")
        if not _is_int(self.min_match) or self.min_match < 0:
            raise InvalidOptionError(
                f"min_match must be an integer >= 0, got {self.min_match!r}"
            )
        if self.mode not in ("match", "unmatch"):
            raise InvalidOptionError(
                f"Invalid 'mode': {self.mode!r}. Expected 'match' or 'unmatch'."
            )

    @property
    def run_temporal(self) -> bool:
        return self.temporal or self.by is not None


# -- package core class
@dataclass(frozen=True)
class CubeSpec:
    """
    Descriptor carried alongside every dataset table:
    which columns identify sites and observations, and the current form.
    """
    key: str
    index: str
    coords: Tuple[str, str]  # (longitude, latitude)
    form: Literal["nested", "long"] = "nested"

    # set once the key was switched to a coarser grouping
    leaf_key: Optional[str] = None
    group_vars: Tuple[str, ...] = ()

    def __post_init__(self):
        coords = tuple(self.coords) if self.coords is not None else ()
        if len(coords) != 2:
            raise MissingRequiredFieldError(
                f"coords must name a longitude and a latitude column, got {self.coords!r}"
            )
        object.__setattr__(self, "coords", coords)
        object.__setattr__(self, "group_vars", tuple(self.group_vars))
        if self.form not in ("nested", "long"):
            raise InvalidOptionError(
                f"Invalid 'form': {self.form!r}. Expected 'nested' or 'long'."
            )

    @property
    def switched(self) -> bool:
        return self.leaf_key is not None

    @property
    def payload(self) -> str:
        """Name of the nested column in nested form."""
        return VAL if self.switched else TS

    def with_form(self, form: str) -> "CubeSpec":
        return replace(self, form=form)


def _payload_columns(frames, what: str) -> List[str]:
    """Shared column names of nested sub-tables, or raise if they diverge."""
    columns = None
    for frame in frames:
        if not isinstance(frame, pd.DataFrame):
            raise ShapeMismatchError(
                f"{what} must hold one DataFrame per row, found {type(frame).__name__}"
            )
        if columns is None:
            columns = list(frame.columns)
        elif set(frame.columns) != set(columns):
            raise ShapeMismatchError(
                f"{what} sub-tables have divergent columns: "
                f"{sorted(map(str, columns))} vs {sorted(map(str, frame.columns))}"
            )
    return columns or []


@dataclass(frozen=True, eq=False)
class NestedDataset:
    """
    One row per site. Time-varying data of a site lives in a nested
    DataFrame (``ts``), or in ``.val`` rows of leaf sites after
    ``switch_key``.
    """
    data: pd.DataFrame
    spec: CubeSpec
    _positions: Mapping[Hashable, int] = field(init=False, repr=False)

    def __post_init__(self):
        if self.spec.form != "nested":
            raise InvalidOptionError("NestedDataset needs a spec with form='nested'")
        require_columns(self.data, [self.spec.key, self.spec.payload], "nested table")

        codes, uniques = factorize_keys(self.data[self.spec.key])
        if (codes < 0).any():
            raise MissingRequiredFieldError(f"key column '{self.spec.key}' has missing values")
        if len(uniques) != len(self.data):
            raise DuplicateKeyError(f"key column '{self.spec.key}' is not unique")

        columns = _payload_columns(self.data[self.spec.payload], f"'{self.spec.payload}'")
        if not self.spec.switched and self.spec.key in columns:
            raise ShapeMismatchError(
                f"key column '{self.spec.key}' must not be repeated inside '{TS}'"
            )

        keys = self.data[self.spec.key].tolist()
        object.__setattr__(
            self, "_positions", MappingProxyType({k: i for i, k in enumerate(keys)})
        )

    def __len__(self):
        return len(self.data)

    @property
    def keys(self) -> List[Hashable]:
        return list(self._positions)

    @property
    def positions(self) -> Mapping[Hashable, int]:
        """Site key -> row position."""
        return self._positions

    @property
    def variant_names(self) -> List[str]:
        return _payload_columns(self.data[self.spec.payload], f"'{self.spec.payload}'")

    @property
    def invariant_names(self) -> List[str]:
        skip = (self.spec.key, self.spec.payload)
        return [c for c in self.data.columns if c not in skip]

    def site(self, key: Hashable) -> pd.Series:
        try:
            pos = self._positions[key]
        except KeyError:
            raise MissingRequiredFieldError(f"no site with key {key!r}") from None
        return self.data.iloc[pos]


@dataclass(frozen=True, eq=False)
class LongDataset:
    """
    One row per observation, plus the spatial sidecar holding
    the invariant attributes once per site.
    """
    data: pd.DataFrame
    spatial: pd.DataFrame
    spec: CubeSpec

    def __post_init__(self):
        spec = self.spec
        if spec.form != "long":
            raise InvalidOptionError("LongDataset needs a spec with form='long'")

        site_key = spec.leaf_key if spec.switched else spec.key
        require_columns(
            self.data, [spec.key, site_key, spec.index], "observation table"
        )
        require_columns(self.spatial, [site_key], "spatial table")

        if self.data.duplicated(subset=[site_key, spec.index]).any():
            raise DuplicateKeyError(
                f"observations are not unique on ('{site_key}', '{spec.index}')"
            )
        codes, uniques = factorize_keys(self.spatial[site_key])
        if (codes < 0).any():
            raise MissingRequiredFieldError(f"spatial key '{site_key}' has missing values")
        if len(uniques) != len(self.spatial):
            raise DuplicateKeyError(f"spatial table has repeated '{site_key}' rows")

    def __len__(self):
        return len(self.data)

    @property
    def site_key(self) -> str:
        return self.spec.leaf_key if self.spec.switched else self.spec.key

    @property
    def keys(self) -> List[Hashable]:
        return list(dict.fromkeys(self.data[self.spec.key].tolist()))

    @property
    def variant_names(self) -> List[str]:
        skip = (self.spec.key, self.site_key)
        return [c for c in self.data.columns if c not in skip]

    @property
    def invariant_names(self) -> List[str]:
        return [c for c in self.spatial.columns if c != self.site_key]


@dataclass(frozen=True)
class SitePair:
    """
    A major site linked to a minor site.
    """
    major: Hashable
    minor: Hashable
    distance_km: float
    group: int
    match_count: Optional[int] = field(default=None, compare=False)

    @property
    def id(self) -> str:
        return f"{self.major}-{self.minor}"


@dataclass(frozen=True)
class UnmatchSummary:
    """Keys found on both sides of a combination, and keys found on one side only."""
    sides: Tuple[str, str]
    matched: Tuple[Hashable, ...]
    unmatched: Dict[str, Tuple[Hashable, ...]]

    @property
    def has_unmatch(self) -> bool:
        return any(len(v) for v in self.unmatched.values())

    def counts(self) -> Dict[str, int]:
        return {side: len(self.unmatched[side]) for side in self.sides}
