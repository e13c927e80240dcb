from __future__ import annotations


class GroundwaterError(Exception):
    """Base error for the groundwater decision-support core."""


class NotFoundError(GroundwaterError):
    """Requested entity does not exist within the caller's organization."""


class InvalidInputError(GroundwaterError):
    """Request shape or value rejected before any state was touched."""
