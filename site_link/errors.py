class SiteLinkError(Exception):
    """Base class for every error raised by site_link."""


class MissingRequiredFieldError(SiteLinkError, KeyError):
    """Key, index or coordinates not supplied or not resolvable."""

    def __str__(self):
        # KeyError would quote the message
        return str(self.args[0]) if self.args else ""


class ShapeMismatchError(SiteLinkError, ValueError):
    """Inconsistent nested sub-tables or incompatible series."""


class DuplicateKeyError(SiteLinkError, ValueError):
    """A key (or key-index pair) that must be unique appears twice."""


class UnmatchedKeyError(SiteLinkError, KeyError):
    """Two inputs being combined share no key."""

    def __str__(self):
        return str(self.args[0]) if self.args else ""


class UnmatchedSidecarError(UnmatchedKeyError):
    """Observation keys and spatial sidecar keys diverge."""


class InvalidOptionError(SiteLinkError, ValueError):
    """Out-of-range or unrecognized configuration value."""


class TooManyGroupingColumnsError(SiteLinkError, ValueError):
    """More nested columns than a conversion can disambiguate."""
