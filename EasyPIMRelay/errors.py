"""Error types raised inside the relay pipeline.

Only errors caused by operator configuration are raised; untrusted input is
recovered where it is parsed and downstream failures become DispatchFailure.
"""


class RelayError(Exception):
    """Base class for errors that map to a specific HTTP status."""

    status_code = 500


class ConfigurationError(RelayError):
    """Required settings or credentials are missing or invalid."""

    status_code = 500


class OverrideError(RelayError):
    """An EASYPIM_* override is present but cannot be parsed."""

    status_code = 400
