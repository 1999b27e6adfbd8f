import logging
from dataclasses import replace
from typing import Dict, Hashable, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd

from .errors import (
    DuplicateKeyError,
    InvalidOptionError,
    ShapeMismatchError,
    TooManyGroupingColumnsError,
    UnmatchedKeyError,
    MissingRequiredFieldError,
)
from .forms import detect_invariant
from .model import TS, CubeSpec, GeoModel, MatchOptions, NestedDataset, SitePair, UnmatchSummary
from .spatial import match_spatial
from .temporal import match_temporal
from .utils import (
    factorize_keys,
    group_positions,
    nested_columns,
    object_column,
    require_columns,
    site_coords,
)

logger = logging.getLogger(__name__)


def as_nested(
        table: pd.DataFrame,
        key: str,
        index: str,
        coords: Sequence[str]
) -> NestedDataset:
    """
    Build a nested dataset from a flat table or an already nested one.

    Parameters
    ----------
    table : pd.DataFrame
        Either one row per observation (flat), or one row per site with a
        column of DataFrames holding each site's observations (nested).
    key : str
        Column identifying the site.
    index : str
        Column identifying the observation time.
    coords : Sequence[str]
        Longitude and latitude column names.

    Returns
    -------
    NestedDataset
        One row per site, observations in ``ts``.
    """
    spec = CubeSpec(key, index, tuple(coords))
    require_columns(table, [key, *spec.coords], "input table")

    listcols = nested_columns(table)
    if not listcols:
        return _nest_flat(table, spec)

    if len(listcols) == 1:
        payload = listcols[0]
    elif TS in listcols:
        payload = TS
    else:
        raise TooManyGroupingColumnsError(
            f"cannot tell which nested column holds the observations: {listcols}"
        )

    out = table.rename(columns={payload: TS}).reset_index(drop=True)
    # a key repeated inside the nested tables is redundant
    out[TS] = object_column([
        ts.drop(columns=[key]) if key in ts.columns else ts for ts in out[TS]
    ])
    if len(out) and index not in out[TS].iloc[0].columns:
        raise MissingRequiredFieldError(f"index '{index}' is not a column of '{payload}'")

    return NestedDataset(out, spec)


def _nest_flat(table: pd.DataFrame, spec: CubeSpec) -> NestedDataset:
    key, index = spec.key, spec.index
    require_columns(table, [index], "input table")

    classes = detect_invariant(table, key)
    moving = [c for c in spec.coords if c in classes.variant]
    if moving:
        raise ShapeMismatchError(f"coordinates vary within a site: {moving}")

    # the index always varies, coordinates never do; columns with no values
    # at all ride along in ts
    variant = [
        c for c in table.columns
        if c != key and c not in spec.coords
        and (c == index or c not in classes.invariant)
    ]
    invariant = [c for c in table.columns if c != key and c not in variant]

    groups = group_positions(table[key])
    first = [pos[0] for pos in groups.values()]
    codes, _ = factorize_keys(table[key])

    # first non-missing value of each invariant per site
    values = table[invariant].groupby(codes).first().reset_index(drop=True)
    out = pd.concat(
        [table[[key]].iloc[first].reset_index(drop=True), values], axis=1
    )

    obs = table[variant]
    out[TS] = object_column([
        obs.iloc[pos].reset_index(drop=True) for pos in groups.values()
    ])

    return NestedDataset(out, spec)


def from_frames(
        spatial: pd.DataFrame,
        temporal: pd.DataFrame,
        key: str,
        index: str,
        coords: Sequence[str],
        by: Optional[Mapping[str, str]] = None,
        output: str = "auto-match"
) -> Union[NestedDataset, UnmatchSummary]:
    """
    Join a spatial table (one row per site) and a temporal table
    (one row per observation) into a nested dataset.

    Parameters
    ----------
    spatial : pd.DataFrame
        Site attributes, one row per key.
    temporal : pd.DataFrame
        Observations, one row per key and index.
    key : str
        Column linking the two tables.
    index, coords
        See ``as_nested``.
    by : Mapping[str, str], optional
        ``{spatial column: temporal column}`` when the link column is
        named differently in the two tables.
    output : {"auto-match", "unmatch"}
        "unmatch" returns the summary of one-sided keys instead of the
        dataset.

    Returns
    -------
    NestedDataset or UnmatchSummary
    """
    if output not in ("auto-match", "unmatch"):
        raise InvalidOptionError(
            f"Invalid 'output': {output!r}. Expected 'auto-match' or 'unmatch'."
        )

    if by:
        if len(by) != 1:
            raise InvalidOptionError("by must map one spatial column to one temporal column")
        (s_name, t_name), = by.items()
        if t_name in temporal.columns and s_name in spatial.columns:
            temporal = temporal.rename(columns={t_name: s_name})
        if key == t_name:
            key = s_name
        shared = [s_name]
    else:
        shared = [c for c in spatial.columns if c in temporal.columns]

    if not shared:
        raise UnmatchedKeyError(
            "spatial and temporal tables need a common column or the 'by' argument"
        )
    if key not in shared:
        raise UnmatchedKeyError(
            f"key '{key}' must be the column shared by the spatial and temporal tables"
        )

    spec = CubeSpec(key, index, tuple(coords))
    require_columns(spatial, [key, *spec.coords], "spatial table")
    require_columns(temporal, [key, index], "temporal table")

    spatial_keys = spatial[key].tolist()
    codes, uniques = factorize_keys(spatial[key])
    if (codes < 0).any():
        raise MissingRequiredFieldError(f"spatial key '{key}' has missing values")
    if len(uniques) != len(spatial):
        raise DuplicateKeyError(f"spatial table has repeated '{key}' rows")

    groups = group_positions(temporal[key])
    known = set(spatial_keys)
    summary = UnmatchSummary(
        sides=("spatial", "temporal"),
        matched=tuple(k for k in spatial_keys if k in groups),
        unmatched={
            "spatial": tuple(k for k in spatial_keys if k not in groups),
            "temporal": tuple(k for k in groups if k not in known),
        }
    )
    if output == "unmatch":
        return summary

    if summary.unmatched["temporal"]:
        logger.warning(
            f"{len(summary.unmatched['temporal'])} site(s) in the temporal table "
            "don't have spatial information"
        )
    if summary.unmatched["spatial"]:
        logger.warning(
            f"{len(summary.unmatched['spatial'])} site(s) in the spatial table "
            "don't have temporal information"
        )
    if summary.has_unmatch:
        logger.warning('Use output="unmatch" to check on the unmatched keys')

    keep = [i for i, k in enumerate(spatial_keys) if k in groups]
    out = spatial.iloc[keep].reset_index(drop=True)
    obs = temporal.drop(columns=[key])
    out[TS] = object_column([
        obs.iloc[groups[k]].reset_index(drop=True) for k in out[key].tolist()
    ])

    return NestedDataset(out, spec)


def _key_summary(major: NestedDataset, minor: NestedDataset) -> UnmatchSummary:
    major_keys = major.keys
    minor_keys = minor.keys
    in_major = set(major_keys)
    in_minor = set(minor_keys)

    return UnmatchSummary(
        sides=("major", "minor"),
        matched=tuple(k for k in major_keys if k in in_minor),
        unmatched={
            "major": tuple(k for k in major_keys if k not in in_minor),
            "minor": tuple(k for k in minor_keys if k not in in_major),
        }
    )


def _as_pairs(pairs, major: NestedDataset, minor: NestedDataset) -> List[SitePair]:
    """Normalise caller-supplied pairs; bare (major, minor) tuples get a distance."""
    lon_a, lat_a = site_coords(major.data, major.spec.coords)
    lon_b, lat_b = site_coords(minor.data, minor.spec.coords)

    groups: Dict[Hashable, int] = {}
    out = []
    for item in pairs:
        if isinstance(item, SitePair):
            out.append(item)
            continue

        major_key, minor_key = item
        if major_key not in major.positions:
            raise UnmatchedKeyError(f"major dataset has no site {major_key!r}")
        if minor_key not in minor.positions:
            raise UnmatchedKeyError(f"minor dataset has no site {minor_key!r}")

        i = major.positions[major_key]
        j = minor.positions[minor_key]
        out.append(
            SitePair(
                major=major_key,
                minor=minor_key,
                distance_km=GeoModel.inverse_km(lat_a[i], lon_a[i], lat_b[j], lon_b[j]),
                group=groups.setdefault(major_key, len(groups) + 1)
            )
        )

    return out


def _assemble(
        major: NestedDataset,
        minor: NestedDataset,
        pairs: List[SitePair],
        options: MatchOptions
) -> NestedDataset:
    """Stack matched major and minor sites into one dataset tagged by group."""
    key = major.spec.key
    index = major.spec.index

    # -- 1. minor columns under major names --
    renames = {minor.spec.key: key}
    renames.update(dict(zip(minor.spec.coords, major.spec.coords)))
    minor_data = minor.data.rename(columns=renames)

    ts_renames = {minor.spec.index: index}
    if options.by:
        ts_renames.update(options.by)
    minor_data[TS] = object_column([ts.rename(columns=ts_renames) for ts in minor_data[TS]])

    variant = list(major.variant_names)
    for ts in minor_data[TS]:
        variant += [c for c in ts.columns if c not in variant]
        break

    # -- 2. one row per (group, role, site), nearest partner's metrics --
    rows: Dict[Tuple, SitePair] = {}
    for pair in sorted(pairs, key=lambda p: p.group):
        for role, site in (("major", pair.major), ("minor", pair.minor)):
            slot = (pair.group, role, site)
            if slot not in rows or pair.distance_km < rows[slot].distance_km:
                rows[slot] = pair

    # majors first within a group
    slots = sorted(rows, key=lambda s: (s[0], s[1] != "major"))

    offset = len(major.data)
    take = []
    for group, role, site in slots:
        source = major if role == "major" else minor
        if site not in source.positions:
            raise UnmatchedKeyError(f"{role} dataset has no site {site!r}")
        pos = source.positions[site]
        take.append(pos if role == "major" else offset + pos)

    combined = pd.concat([major.data, minor_data], ignore_index=True, sort=False)
    out = combined.iloc[take].reset_index(drop=True)
    out[TS] = object_column([ts.reindex(columns=variant) for ts in out[TS]])

    # -- 3. match metadata --
    chosen = [rows[s] for s in slots]
    out.insert(0, "match_key", object_column(slots))
    out.insert(1, "group", [s[0] for s in slots])
    out.insert(2, "role", [s[1] for s in slots])
    out["distance_km"] = [p.distance_km for p in chosen]
    if options.run_temporal:
        out["match_count"] = [p.match_count for p in chosen]

    # ts stays the last column
    out = out[[c for c in out.columns if c != TS] + [TS]]

    spec = CubeSpec("match_key", index, major.spec.coords)
    return NestedDataset(out, spec)


def match_sites(
        major: NestedDataset,
        minor: NestedDataset,
        options: Optional[MatchOptions] = None,
        pairs: Optional[Sequence[Union[SitePair, Tuple[Hashable, Hashable]]]] = None,
        **kwargs
) -> Union[NestedDataset, UnmatchSummary]:
    """
    Match the sites of two datasets spatially and, optionally, temporally.

    Key-level workflow:
    - Spatial: nearest minors per major under ``n_keep``, ``dist_max`` and
      ``single_match`` (skipped when ``pairs`` are supplied).
    - Temporal: peak agreement on the spatial survivors, when ``by`` is
      given or ``temporal=True``.
    - Assembly: every surviving major and minor site in one dataset keyed
      by ``(group, role, key)``.

    Parameters
    ----------
    major, minor : NestedDataset
        The two site sets.
    options : MatchOptions, optional
        Matching options; keyword arguments override its fields.
    pairs : Sequence, optional
        Pre-computed pairs, as SitePair objects or (major, minor) key tuples.

    Returns
    -------
    NestedDataset or UnmatchSummary
        The matched dataset with ``group``, ``role``, ``distance_km`` and
        (temporal) ``match_count`` columns, or with ``mode="unmatch"`` the
        keys found on only one side.
    """
    if options is None:
        options = MatchOptions(**kwargs)
    elif kwargs:
        options = replace(options, **kwargs)

    for side, dataset in (("major", major), ("minor", minor)):
        if not isinstance(dataset, NestedDataset) or dataset.spec.switched:
            raise InvalidOptionError(f"{side} must be a nested dataset keyed by site")

    summary = _key_summary(major, minor)
    if options.mode == "unmatch":
        return summary

    if summary.has_unmatch:
        counts = summary.counts()
        msg = (
            f"{counts['major']} major key(s) and {counts['minor']} minor key(s) "
            "are present on one side only"
        )
        if not summary.matched:
            msg += "; the datasets share no key"
        logger.warning(f"{msg}; use mode='unmatch' to list them")

    if pairs is None:
        pairs = match_spatial(
            major, minor,
            n_keep=options.n_keep,
            dist_max=options.dist_max,
            single_match=options.single_match,
            method=options.method
        )
    else:
        pairs = _as_pairs(pairs, major, minor)

    if options.run_temporal:
        pairs = match_temporal(
            pairs, major, minor,
            by=options.by,
            independent=options.independent,
            n_highest=options.n_highest,
            window=options.window,
            min_match=options.min_match
        )

    logger.info(f"{len(pairs)} site pair(s) matched")
    return _assemble(major, minor, pairs, options)
