"""
Error taxonomy for reverse-geocode resolution.

Each error carries the HTTP status the API layer should answer with and a
stable code used as the prefix of the `error` string in the response envelope.
"""


class GeocodeError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def to_envelope(self) -> dict:
        return {"error": f"{self.code}: {self.message}" if self.message else self.code}


class MissingInput(GeocodeError):
    status_code = 400
    code = "MISSING_INPUT"


class InvalidCoordinates(GeocodeError):
    status_code = 400
    code = "INVALID_COORDINATES"


class LocationUnavailable(GeocodeError):
    """The IP provider answered but could not place the address."""
    status_code = 400
    code = "LOCATION_UNAVAILABLE"


class UpstreamError(GeocodeError):
    """A provider failed. `status_code` is the provider's own HTTP status."""
    code = "UPSTREAM_ERROR"

    def __init__(self, message: str = "", status_code: int = 502):
        super().__init__(message)
        self.status_code = status_code


class StoreError(GeocodeError):
    status_code = 503
    code = "CACHE_UNAVAILABLE"
