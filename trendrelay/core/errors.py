from __future__ import annotations


class RelayError(Exception):
    """Base class for errors surfaced to callers of the relay."""

    status_code = 500
    name = "Internal"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.name


class Unauthorized(RelayError):
    """Missing or wrong shared key. Nothing was mutated."""

    status_code = 401
    name = "Unauthorized"


class InvalidArgument(RelayError):
    """Malformed enum or required field on a strict operation."""

    status_code = 400
    name = "InvalidArgument"
