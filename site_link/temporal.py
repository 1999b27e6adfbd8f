import logging
from dataclasses import replace
from typing import Dict, Hashable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .errors import (
    InvalidOptionError,
    MissingRequiredFieldError,
    ShapeMismatchError,
    UnmatchedKeyError,
)
from .forms import to_long
from .model import LongDataset, MatchOptions, NestedDataset, SitePair
from .utils import group_positions

logger = logging.getLogger(__name__)

Dataset = Union[NestedDataset, LongDataset]


def _index_values(values: pd.Series) -> np.ndarray:
    """Index column as a numeric or datetime64 array; periods become ordinals."""
    if isinstance(values.dtype, pd.PeriodDtype):
        return values.array.asi8
    if isinstance(values.dtype, pd.DatetimeTZDtype):
        values = values.dt.tz_convert(None)
    elif values.dtype == object:
        try:
            values = pd.to_datetime(values)
        except (TypeError, ValueError) as e:
            raise ShapeMismatchError(
                f"index '{values.name}' is neither numeric nor a date"
            ) from e

    out = values.to_numpy()
    if out.dtype.kind not in "iufM":
        raise ShapeMismatchError(f"index '{values.name}' is neither numeric nor a date")
    return out


def find_peaks(obs: pd.DataFrame, index: str, variable: str, n_highest: int = 20) -> np.ndarray:
    """
    Index values of the ``n_highest`` largest values of ``variable``.

    Missing values are skipped; ties go to the earliest index.
    """
    valid = obs[[index, variable]].dropna()
    top = valid.sort_values(
        [variable, index], ascending=[False, True], kind="mergesort"
    ).head(n_highest)
    return _index_values(top[index])


def _half_window(window, peaks: np.ndarray):
    if peaks.dtype.kind == "M":
        span = window if isinstance(window, pd.Timedelta) else pd.Timedelta(days=window)
        return (span / 2).to_timedelta64()
    if isinstance(window, pd.Timedelta):
        raise InvalidOptionError("a Timedelta window needs a date index")
    return window / 2


def count_matches(independent: np.ndarray, dependent: np.ndarray, window) -> int:
    """
    Number of dependent peaks inside at least one interval
    ``[peak - window/2, peak + window/2]`` around an independent peak.
    """
    if not len(independent) or not len(dependent):
        return 0
    if (independent.dtype.kind == "M") != (dependent.dtype.kind == "M"):
        raise ShapeMismatchError("cannot compare a date index with a numeric index")

    half = _half_window(window, independent)
    starts = independent - half
    ends = independent + half

    inside = (dependent[:, None] >= starts[None, :]) & (dependent[:, None] <= ends[None, :])
    return int(inside.any(axis=1).sum())


def _resolve_by(
        by: Optional[Mapping[str, str]],
        major: LongDataset,
        minor: LongDataset
) -> Tuple[str, str]:
    """(major variable, minor variable) to compare."""
    major_vars = [c for c in major.variant_names if c != major.spec.index]
    minor_vars = [c for c in minor.variant_names if c != minor.spec.index]

    if by is None:
        shared = [c for c in major_vars if c in minor_vars]
        if len(shared) != 1:
            raise InvalidOptionError(
                f"specify 'by': major and minor share {len(shared)} variables {shared}"
            )
        return shared[0], shared[0]

    (minor_var, major_var), = by.items()
    if major_var not in major_vars:
        raise MissingRequiredFieldError(f"major dataset has no variable '{major_var}'")
    if minor_var not in minor_vars:
        raise MissingRequiredFieldError(f"minor dataset has no variable '{minor_var}'")
    return major_var, minor_var


class _SeriesLookup:
    """Observation rows of each site of a long dataset."""

    def __init__(self, long: LongDataset, side: str):
        if long.spec.switched:
            raise InvalidOptionError(
                f"{side} dataset is keyed by '{long.spec.key}' over '{long.spec.leaf_key}'; "
                "temporal matching needs one series per site"
            )
        self.long = long
        self.side = side
        self.groups: Dict[Hashable, np.ndarray] = group_positions(long.data[long.spec.key])
        self.sites = set(long.spatial[long.spec.key].tolist())

    def __getitem__(self, key) -> pd.DataFrame:
        if key in self.groups:
            return self.long.data.iloc[self.groups[key]]
        if key in self.sites:
            return self.long.data.iloc[[]]
        raise UnmatchedKeyError(f"{self.side} dataset has no site {key!r}")


def _as_long(dataset: Dataset) -> LongDataset:
    return dataset if isinstance(dataset, LongDataset) else to_long(dataset)


def match_temporal(
        pairs: Sequence[SitePair],
        major: Dataset,
        minor: Dataset,
        by: Optional[Mapping[str, str]] = None,
        independent: str = "major",
        n_highest: int = 20,
        window: Union[float, pd.Timedelta] = 5,
        min_match: int = 0
) -> List[SitePair]:
    """
    Count agreeing peaks between the two series of every pair.

    The ``n_highest`` largest values of the independent series each open
    an interval of width ``window`` centred on their index; the dependent
    series' own ``n_highest`` peaks are counted when they fall inside
    at least one interval.

    Parameters
    ----------
    pairs : Sequence[SitePair]
        Pairs to score, usually from ``match_spatial``.
    major, minor : NestedDataset or LongDataset
        Datasets holding the observations of each side.
    by : Mapping[str, str], optional
        ``{minor variable: major variable}``. Defaults to the single
        variable both datasets share.
    independent : {"major", "minor"}
        Side whose peaks define the intervals.
    n_highest : int
        Peaks taken from each series, >= 1.
    window : float or pd.Timedelta
        Interval width in index units (days for a datetime index,
        periods for a Period index).
    min_match : int
        Pairs with fewer matching peaks are dropped.

    Returns
    -------
    List[SitePair]
        Surviving pairs with ``match_count`` set, in input order.
    """
    opts = MatchOptions(
        by=by, independent=independent, n_highest=n_highest,
        window=window, min_match=min_match
    )

    major_long = _as_long(major)
    minor_long = _as_long(minor)
    major_var, minor_var = _resolve_by(opts.by, major_long, minor_long)

    major_series = _SeriesLookup(major_long, "major")
    minor_series = _SeriesLookup(minor_long, "minor")

    sides = {
        "major": (major_series, major_long.spec.index, major_var),
        "minor": (minor_series, minor_long.spec.index, minor_var),
    }
    dependent = "minor" if opts.independent == "major" else "major"
    ind_lookup, ind_index, ind_var = sides[opts.independent]
    dep_lookup, dep_index, dep_var = sides[dependent]

    out = []
    for pair in pairs:
        ind_key = pair.major if opts.independent == "major" else pair.minor
        dep_key = pair.minor if opts.independent == "major" else pair.major

        ind_peaks = find_peaks(ind_lookup[ind_key], ind_index, ind_var, opts.n_highest)
        dep_peaks = find_peaks(dep_lookup[dep_key], dep_index, dep_var, opts.n_highest)
        count = count_matches(ind_peaks, dep_peaks, opts.window)

        if count < opts.min_match:
            continue
        out.append(replace(pair, match_count=count))

    logger.debug(
        f"{len(out)} of {len(pairs)} pairs kept with at least {opts.min_match} matching peaks"
    )
    return out
