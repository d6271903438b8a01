from __future__ import annotations


class ContribSnakeError(Exception):
    """Base class for engine errors."""


class ConfigError(ContribSnakeError, ValueError):
    """Invalid configuration or construction arguments (fails fast)."""


class SnapshotFormatError(ContribSnakeError):
    """A snapshot document is structurally invalid and must be discarded."""


class RequestError(ContribSnakeError, ValueError):
    """A decision request is missing required fields."""
