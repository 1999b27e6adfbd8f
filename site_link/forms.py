"""
Conversion between the nested form (one row per site) and the long
form (one row per observation plus a spatial sidecar), and the key
promotion that moves a dataset to a coarser grouping.
"""
import logging
from collections import namedtuple
from dataclasses import replace
from typing import Literal, Sequence

import numpy as np
import pandas as pd

from .errors import (
    InvalidOptionError,
    MissingRequiredFieldError,
    UnmatchedSidecarError,
)
from .model import TS, VAL, CubeSpec, LongDataset, NestedDataset
from .utils import factorize_keys, group_positions, object_column, require_columns

logger = logging.getLogger(__name__)

Classification = namedtuple("Classification", ["invariant", "variant"])


def detect_invariant(table: pd.DataFrame, key: str) -> Classification:
    """
    Split the non-key columns of a flat table into invariant and variant.

    A column is invariant when every key group holds at most one distinct
    non-missing value for it, variant otherwise. Columns missing
    everywhere are neither.

    Parameters
    ----------
    table : pd.DataFrame
        Flat table with one or more rows per key.
    key : str
        Column identifying the site.

    Returns
    -------
    Classification
        ``(invariant, variant)`` lists of column names, in table order.
    """
    require_columns(table, [key], "flat table")
    codes, _ = factorize_keys(table[key])
    if (codes < 0).any():
        raise MissingRequiredFieldError(f"key column '{key}' has missing values")

    others = [c for c in table.columns if c != key]
    if not others:
        return Classification([], [])

    counts = table[others].groupby(codes).nunique(dropna=True)

    invariant, variant = [], []
    for name in others:
        if not table[name].notna().any():
            continue
        if (counts[name] <= 1).all():
            invariant.append(name)
        else:
            variant.append(name)

    return Classification(invariant, variant)


def to_long(nested: NestedDataset) -> LongDataset:
    """
    Unnest every site's ``ts`` into observation rows.

    Columns living inside ``ts`` are the variant attributes; every other
    non-key column, coordinates included, goes to the spatial sidecar.
    On a switched dataset the ``.val`` rows are flattened first and the
    result is promoted, so observations carry both keys.

    Parameters
    ----------
    nested : NestedDataset
        Dataset in nested form.

    Returns
    -------
    LongDataset
        Observations grouped by key in site order, each site's index
        order kept, and one sidecar row per site.
    """
    spec = nested.spec
    if spec.switched:
        group_vars = tuple(nested.invariant_names)
        leaves = to_long(_flatten(nested))
        return promote(leaves, spec.key, group_vars=group_vars)

    key = spec.key
    variant = nested.variant_names or [spec.index]
    if len(nested) and spec.index not in variant:
        raise MissingRequiredFieldError(f"index '{spec.index}' is not a column of '{TS}'")

    frames = [ts.reindex(columns=variant) for ts in nested.data[TS]]
    if frames:
        data = pd.concat(frames, ignore_index=True)
    else:
        data = pd.DataFrame(columns=variant)

    # replicate the key onto every observation
    lengths = [len(f) for f in frames]
    data.insert(0, key, np.repeat(nested.data[key].to_numpy(), lengths))

    spatial = nested.data.drop(columns=[TS]).reset_index(drop=True)
    return LongDataset(data, spatial, spec.with_form("long"))


def to_nested(
        long: LongDataset,
        unmatched: Literal["drop", "raise"] = "drop"
) -> NestedDataset:
    """
    Nest observations back into one row per site.

    Observations are grouped by key, variant columns become each site's
    ``ts`` (index order kept) and the result is joined with the spatial
    sidecar. Sidecar sites without observations get an empty ``ts``.

    Parameters
    ----------
    long : LongDataset
        Dataset in long form.
    unmatched : {"drop", "raise"}
        What to do with observation keys that have no sidecar row.
        ``"drop"`` removes them and logs how many were dropped,
        ``"raise"`` raises UnmatchedSidecarError.

    Returns
    -------
    NestedDataset
        Sites ordered as in the sidecar.
    """
    if unmatched not in ("drop", "raise"):
        raise InvalidOptionError(
            f"Invalid 'unmatched': {unmatched!r}. Expected 'drop' or 'raise'."
        )

    spec = long.spec
    if spec.switched:
        leaf_spec = CubeSpec(spec.leaf_key, spec.index, spec.coords, form="long")
        leaves = LongDataset(long.data.drop(columns=[spec.key]), long.spatial, leaf_spec)
        return _switch(to_nested(leaves, unmatched), spec.key, spec.group_vars)

    key = spec.key
    groups = group_positions(long.data[key])
    spatial_keys = long.spatial[key].tolist()
    known = set(spatial_keys)

    only_long = [k for k in groups if k not in known]
    if only_long:
        msg = f"{len(only_long)} key(s) have observations but no spatial row"
        if unmatched == "raise":
            raise UnmatchedSidecarError(msg)
        logger.warning(f"{msg}; dropped from the nested result")

    out = long.spatial.reset_index(drop=True)

    # sidecar sites without observations keep an empty ts
    obs = long.data.drop(columns=[key])
    empty = obs.iloc[[]].reset_index(drop=True)
    out[TS] = object_column([
        obs.iloc[groups[k]].reset_index(drop=True) if k in groups else empty.copy()
        for k in spatial_keys
    ])

    return NestedDataset(out, spec.with_form("nested"))


def promote(
        long: LongDataset,
        attribute: str,
        group_vars: Sequence[str] = ()
) -> LongDataset:
    """
    Reclassify an invariant attribute as the key of a long dataset.

    The current key becomes the leaf key and the sidecar stays at leaf
    granularity; the new key value is replicated onto the observations.
    ``group_vars`` names sidecar columns that belong to the new key
    rather than to the leaf sites.
    """
    spec = long.spec
    if spec.switched:
        raise InvalidOptionError(
            f"dataset is already keyed by '{spec.key}' over '{spec.leaf_key}'"
        )
    if attribute == spec.key or attribute not in long.invariant_names:
        raise MissingRequiredFieldError(
            f"'{attribute}' is not an invariant attribute of the dataset"
        )
    missing = [g for g in group_vars if g not in long.invariant_names]
    if missing:
        raise MissingRequiredFieldError(
            f"group attribute(s) not in the spatial table: {', '.join(missing)}"
        )

    lookup = {k: i for i, k in enumerate(long.spatial[spec.key].tolist())}
    try:
        rows = [lookup[k] for k in long.data[spec.key].tolist()]
    except KeyError as e:
        raise UnmatchedSidecarError(f"observation key {e.args[0]!r} has no spatial row") from None

    data = long.data.copy()
    data.insert(0, attribute, long.spatial[attribute].to_numpy()[rows])

    new_spec = replace(spec, key=attribute, leaf_key=spec.key, group_vars=tuple(group_vars))
    return LongDataset(data, long.spatial, new_spec)


def switch_key(nested: NestedDataset, column: str) -> NestedDataset:
    """
    Re-key a nested dataset to a coarser grouping.

    Sites are grouped by the value of ``column`` in order of first
    appearance. Each output row holds the new key and, in ``.val``, the
    original site rows (with their ``ts``) of its group. Switching a
    switched dataset back to its leaf key undoes the grouping.

    Parameters
    ----------
    nested : NestedDataset
        Dataset in nested form.
    column : str
        Invariant column to use as the new key.

    Returns
    -------
    NestedDataset
        One row per distinct value of ``column``.
    """
    return _switch(nested, column)


def _switch(nested: NestedDataset, column: str, group_vars: Sequence[str] = ()) -> NestedDataset:
    spec = nested.spec
    if spec.switched:
        if column == spec.leaf_key:
            return _flatten(nested)
        raise InvalidOptionError(
            f"dataset is keyed by '{spec.key}' over '{spec.leaf_key}'; "
            f"switch back to '{spec.leaf_key}' first"
        )
    if column == spec.key:
        raise InvalidOptionError(f"'{column}' is already the key")
    if column not in nested.invariant_names:
        raise MissingRequiredFieldError(
            f"'{column}' is not an invariant attribute of the dataset"
        )

    data = nested.data
    if data[column].isna().any():
        raise MissingRequiredFieldError(f"new key '{column}' has missing values")

    # new key -> leaf row positions
    groups = group_positions(data[column])
    first = [pos[0] for pos in groups.values()]

    leaf_cols = [c for c in data.columns if c != column and c not in group_vars]
    out = data[[column, *group_vars]].iloc[first].reset_index(drop=True)
    out[VAL] = object_column([
        data[leaf_cols].iloc[pos].reset_index(drop=True) for pos in groups.values()
    ])

    new_spec = replace(spec, key=column, leaf_key=spec.key, group_vars=tuple(group_vars))
    return NestedDataset(out, new_spec)


def _flatten(nested: NestedDataset) -> NestedDataset:
    """Leaf-level dataset of a switched one; the switched key becomes an invariant."""
    spec = nested.spec
    data = nested.data
    vals = list(data[VAL])

    if vals:
        leaves = pd.concat(vals, ignore_index=True)
    else:
        leaves = pd.DataFrame(columns=[spec.leaf_key, TS])

    lengths = [len(v) for v in vals]
    leaves.insert(1, spec.key, np.repeat(data[spec.key].to_numpy(), lengths))
    for name in nested.invariant_names:
        leaves[name] = np.repeat(data[name].to_numpy(), lengths)

    # ts stays the last column
    leaves = leaves[[c for c in leaves.columns if c != TS] + [TS]]

    leaf_spec = CubeSpec(spec.leaf_key, spec.index, spec.coords)
    return NestedDataset(leaves, leaf_spec)

