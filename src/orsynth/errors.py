# src/orsynth/errors.py
from __future__ import annotations

from datetime import datetime, timezone


class OrsynthError(Exception):
    """Base class for all structured orsynth exceptions."""

    def __init__(
        self, message: str, source: str | None = None, suggested_action: str | None = None
    ):
        super().__init__(message)
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.error_type = self.__class__.__name__
        self.source = source or "unknown"
        self.suggested_action = suggested_action

    def __str__(self) -> str:
        base = f"[{self.error_type}] {self.args[0]}"
        if self.source:
            base += f" (source={self.source})"
        if self.suggested_action:
            base += f" | action: {self.suggested_action}"
        return base


class ConfigError(OrsynthError):
    """Invalid or missing configuration (config.yaml / facility reference data)"""


class DataError(OrsynthError):
    """Malformed or inconsistent input data"""


class ResolutionError(OrsynthError):
    """A surgeon profile could not be resolved against facility data"""


class PersistenceError(OrsynthError):
    """A datastore write, delete or stored-procedure call failed"""


class ValidationError(OrsynthError):
    """Generated dataset violates an invariant"""


class VisualizationError(OrsynthError):
    """Plotting or rendering failure"""
