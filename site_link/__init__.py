"""
Site Link Package
=================

Spatio-temporal panel data (sites observed repeatedly over time) held in
two interconvertible forms, and site matching across two datasets.

Core Functionality:
-------------------
- Convert between the nested form (one row per site, observations in a
  nested ``ts`` table) and the long form (one row per observation plus a
  spatial sidecar).
- Re-key a dataset to a coarser grouping of sites.
- Match sites of two datasets by ellipsoidal distance and by agreement of
  the peaks of their time series.

"""

import logging

# 1. Expose Data Models (The Nouns)
from .model import (
    CubeSpec,
    NestedDataset,
    LongDataset,
    SitePair,
    UnmatchSummary,
    MatchOptions,
    GeoModel,
)

# 2. Expose Core Workflows (The Verbs)
from .forms import (
    detect_invariant,
    to_long,
    to_nested,
    promote,
    switch_key,
)
from .core import (
    as_nested,
    from_frames,
    match_sites,
)
from .spatial import (
    distance_matrix,
    match_spatial,
)
from .temporal import (
    find_peaks,
    count_matches,
    match_temporal,
)

# 3. Expose Errors and Utilities
from .errors import (
    SiteLinkError,
    MissingRequiredFieldError,
    ShapeMismatchError,
    DuplicateKeyError,
    UnmatchedKeyError,
    UnmatchedSidecarError,
    InvalidOptionError,
    TooManyGroupingColumnsError,
)
from .logger import setup_logger
from .utils import geo_coord2xyz

logging.getLogger(__name__).addHandler(logging.NullHandler())

# 4. Define Export List
__all__ = [
    # Models
    "CubeSpec",
    "NestedDataset",
    "LongDataset",
    "SitePair",
    "UnmatchSummary",
    "MatchOptions",
    "GeoModel",

    # Conversion
    "detect_invariant",
    "to_long",
    "to_nested",
    "promote",
    "switch_key",
    "as_nested",
    "from_frames",

    # Matching
    "distance_matrix",
    "match_spatial",
    "find_peaks",
    "count_matches",
    "match_temporal",
    "match_sites",

    # Errors
    "SiteLinkError",
    "MissingRequiredFieldError",
    "ShapeMismatchError",
    "DuplicateKeyError",
    "UnmatchedKeyError",
    "UnmatchedSidecarError",
    "InvalidOptionError",
    "TooManyGroupingColumnsError",

    # Utilities
    "setup_logger",
    "geo_coord2xyz",
]
