"""Custom exception hierarchy for skelmesh."""


class SkelmeshError(Exception):
    """Base exception for all skelmesh errors."""


class ParseError(SkelmeshError):
    """Raised when YAML parsing or schema deserialization fails."""


class ValidationError(SkelmeshError):
    """Raised when scene input is malformed (bad refs, missing streams, etc.)."""


class UnsupportedFeatureError(SkelmeshError):
    """Raised for input features that have no supported equivalent."""


class InvariantError(SkelmeshError):
    """Raised when an internal invariant is violated during processing."""


class ExportError(SkelmeshError):
    """Raised when glTF/GLB export fails."""
