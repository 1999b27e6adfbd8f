import logging
from typing import List, Optional

import numpy as np
from scipy.spatial import cKDTree

from .errors import InvalidOptionError
from .model import GeoModel, MatchOptions, NestedDataset, SitePair
from .utils import geo_coord2xyz, site_coords

logger = logging.getLogger(__name__)

# chord/geodesic round-off allowance for the KD-tree radius (km)
_CHORD_SLACK_KM = 1e-6


def distance_matrix(
        major: NestedDataset,
        minor: NestedDataset,
        method: str = "full",
        dist_max: Optional[float] = None
) -> np.ndarray:
    """
    Ellipsoidal (WGS84) geodesic distance, in km, from every major site
    to every minor site.

    Parameters
    ----------
    major, minor : NestedDataset
        Site sets exposing numeric longitude/latitude columns (degrees).
    method : {"full", "kdtree"}
        "full" solves the geodesic for every pair. "kdtree" solves it
        only for pairs whose ECEF chord is within ``dist_max`` and fills
        the rest with ``inf``. The chord never exceeds the geodesic, so
        every pair within ``dist_max`` gets its exact distance either way.
    dist_max : float, optional
        Search radius (km), required by "kdtree".

    Returns
    -------
    np.ndarray
        Array of shape ``(len(major), len(minor))``.
    """
    lon_a, lat_a = site_coords(major.data, major.spec.coords)
    lon_b, lat_b = site_coords(minor.data, minor.spec.coords)

    dist = np.full((len(lon_a), len(lon_b)), np.inf)

    if method == "full":
        for i in range(len(lon_a)):
            for j in range(len(lon_b)):
                dist[i, j] = GeoModel.inverse_km(lat_a[i], lon_a[i], lat_b[j], lon_b[j])
        n_solved = dist.size

    elif method == "kdtree":
        if dist_max is None:
            raise InvalidOptionError("method='kdtree' needs dist_max")
        if not len(lon_a) or not len(lon_b):
            return dist

        tree_a = cKDTree(geo_coord2xyz(lon_a, lat_a))
        tree_b = cKDTree(geo_coord2xyz(lon_b, lat_b))
        candidates = tree_a.query_ball_tree(tree_b, r=dist_max + _CHORD_SLACK_KM)

        n_solved = 0
        for i, js in enumerate(candidates):
            for j in js:
                dist[i, j] = GeoModel.inverse_km(lat_a[i], lon_a[i], lat_b[j], lon_b[j])
            n_solved += len(js)

    else:
        raise InvalidOptionError(
            f"Invalid 'method': {method!r}. Expected 'full' or 'kdtree'."
        )

    logger.debug(
        f"distance matrix {dist.shape[0]}x{dist.shape[1]} ({method}), "
        f"{n_solved} geodesic solves"
    )
    return dist


def match_spatial(
        major: NestedDataset,
        minor: NestedDataset,
        n_keep: int = 1,
        dist_max: float = 10.0,
        single_match: bool = False,
        method: str = "full"
) -> List[SitePair]:
    """
    Pair major sites with their nearest minor sites.

    Filters apply in a fixed order:

    1. each major keeps its ``n_keep`` nearest minors (ties: minor order);
    2. pairs farther than ``dist_max`` km are dropped;
    3. with ``single_match``, a minor claimed by several majors stays
       only with the nearest one (ties: major order).

    Parameters
    ----------
    major, minor : NestedDataset
        Site sets, see ``distance_matrix``.
    n_keep : int
        Nearest minors kept per major, >= 1.
    dist_max : float
        Maximum pair distance in km, >= 0.
    single_match : bool
        Allow each minor site in at most one pair.
    method : {"full", "kdtree"}
        Distance computation, see ``distance_matrix``.

    Returns
    -------
    List[SitePair]
        Surviving pairs, grouped by major site. Groups are numbered
        from 1 in major order; majors left without a partner get none.
    """
    opts = MatchOptions(
        n_keep=n_keep, dist_max=dist_max, single_match=single_match, method=method
    )
    if not len(major) or not len(minor):
        return []

    dist = distance_matrix(major, minor, method=opts.method, dist_max=opts.dist_max)

    # -- 1. n nearest per major --
    nearest = np.argsort(dist, axis=1, kind="stable")[:, :opts.n_keep]
    rows = np.repeat(np.arange(dist.shape[0]), nearest.shape[1])
    cols = nearest.ravel()
    d = dist[rows, cols]

    # -- 2. distance cut --
    keep = d <= opts.dist_max
    rows, cols, d = rows[keep], cols[keep], d[keep]

    # -- 3. one major per minor --
    if opts.single_match:
        best = {}
        # rows ascend, so a strict comparison keeps the earlier major on ties
        for r, c, dd in zip(rows, cols, d):
            if c not in best or dd < best[c][1]:
                best[c] = (r, dd)
        winners = {(r, c) for c, (r, _) in best.items()}
        keep = np.array([(r, c) in winners for r, c in zip(rows, cols)], dtype=bool)
        rows, cols, d = rows[keep], cols[keep], d[keep]

    major_keys = major.keys
    minor_keys = minor.keys

    groups = {}
    pairs = []
    for r, c, dd in zip(rows, cols, d):
        group = groups.setdefault(r, len(groups) + 1)
        pairs.append(
            SitePair(
                major=major_keys[r],
                minor=minor_keys[c],
                distance_km=float(dd),
                group=group
            )
        )

    logger.debug(f"{len(pairs)} spatial pairs in {len(groups)} groups")
    return pairs
