"""Error taxonomy for the conversation engine"""


class ProviderUnavailable(RuntimeError):
    """Model or embedding provider is missing, failing or timed out.

    Never escapes the engine: every caller has a deterministic fallback.
    """


class ValidationFailure(ValueError):
    """Model output could not be parsed into the expected shape"""


class StoreError(RuntimeError):
    """Persistence failed; the current transaction was rolled back"""


class TurnStateError(ValueError):
    """Request does not match the stored turn state (unknown or already answered)"""
