"""Exception hierarchy shared by every arbguard layer.

Rejections and validation failures are not exceptions: they come back as
result values (SizingResult, ValidationResult). The classes below cover the
cases that must reach the operator.
"""


class ArbGuardError(Exception):
    """Base class for all arbguard errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class FatalError(ArbGuardError):
    """Stops the engine; requires operator intervention, never retried."""


class ConfigurationError(FatalError):
    """Invalid or incomplete configuration, detected at startup."""


class MalformedSnapshotError(ArbGuardError, ValueError):
    """A price snapshot carried an unparseable pair or a non-positive / non-finite rate."""


class InvalidPathError(ArbGuardError, ValueError):
    """An asset path is not a closed cycle over at least three distinct assets."""


class MissingPairError(ArbGuardError, LookupError):
    """A leg's pair is absent from the snapshot and strict pair checking is on."""

    def __init__(self, pairs) -> None:
        self.pairs = tuple(pairs)
        super().__init__(f"pairs missing from snapshot: {', '.join(self.pairs)}")


class PositionNotFound(ArbGuardError, KeyError):
    """An operation referenced a position id the portfolio does not hold."""

    def __init__(self, position_id: str) -> None:
        self.position_id = position_id
        super().__init__(f"position not found: {position_id}")

    def __str__(self) -> str:
        return self.args[0]


class EmergencyStopFailed(FatalError):
    """Liquidation could not complete; portfolio left untouched."""
