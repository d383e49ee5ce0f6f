"""Exception hierarchy for the mirror, sync and cache engine."""


class CatalogMirrorError(Exception):
    """Base exception for catalog mirror operations."""


class TransientRemoteError(CatalogMirrorError):
    """A remote call failed in a way that may succeed on a later attempt.

    Rows affected by this error stay pending; a download batch that hits
    it is skipped.
    """


class MalformedRowError(CatalogMirrorError):
    """A remote row is missing required fields and cannot be mirrored."""


class SerializationFailure(CatalogMirrorError):
    """A value could not be serialized to or parsed from durable storage."""


class UnauthenticatedAccess(CatalogMirrorError):
    """A user-scoped operation was attempted without a signed-in user."""


class GeocodeError(CatalogMirrorError):
    """Reverse geocoding produced no usable address."""
