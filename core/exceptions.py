"""
Custom exceptions for the ensemble recalibration engine.

Provides a hierarchy of exceptions so each failure class is handled at
the right level instead of failing silently.

Usage:
    from core.exceptions import DataUnavailableError, MalformedRecordError

    try:
        rows = source.fetch_outcomes(algorithm_id, since)
    except DataUnavailableError as e:
        print(f"Outcome store unavailable: {e}")

Insufficient sample size is deliberately NOT an exception: a thin window
is a normal state (see AlgorithmPerformanceWindow.has_sufficient_sample).
"""


class RecalibrationError(Exception):
    """
    Base exception for all recalibration engine errors.

    All custom exceptions inherit from this, allowing:
        except RecalibrationError:
            # Catch any engine error
    """
    pass


# =============================================================================
# DATA ERRORS
# =============================================================================

class DataUnavailableError(RecalibrationError):
    """
    Outcome data could not be fetched.

    Raised when:
    - The outcome store is unreachable or times out
    - The store returns an error instead of rows

    Non-fatal: the orchestrator aborts the tick, keeps the last-known-good
    weights and retries on the next scheduled tick.
    """

    def __init__(self, source: str, message: str = None, original_error: Exception = None):
        self.source = source
        self.original_error = original_error
        msg = f"Outcome data unavailable from {source}"
        if message:
            msg += f": {message}"
        if original_error:
            msg += f" (caused by: {type(original_error).__name__}: {original_error})"
        super().__init__(msg)


class MalformedRecordError(RecalibrationError):
    """
    A single outcome row failed validation.

    Raised when:
    - A required field is missing
    - Confidence is outside 0..100
    - The timestamp or status cannot be parsed

    The offending row is skipped with a warning; the tick continues.
    """

    def __init__(self, record, reason: str):
        self.record = record
        self.reason = reason
        match_id = record.get('match_id') if isinstance(record, dict) else None
        msg = f"Malformed outcome record: {reason}"
        if match_id:
            msg += f" (match_id: {match_id})"
        super().__init__(msg)


# =============================================================================
# STORAGE ERRORS
# =============================================================================

class StaleWriteError(RecalibrationError):
    """
    Compare-and-swap on the weight store failed.

    Raised when the store version changed between the snapshot read at
    the start of a tick and the publish at its end.
    """

    def __init__(self, expected_version: int, actual_version: int):
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Weight store changed during tick: "
            f"expected version {expected_version}, found {actual_version}"
        )


# =============================================================================
# SYNTHESIS ERRORS
# =============================================================================

class SynthesisError(RecalibrationError):
    """
    Error from the external meta-synthesis service.

    Raised when:
    - The request times out or the connection fails
    - The service is rate limited (429) or out of credits (402)
    - The response body cannot be parsed as a synthesis result
    """

    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        msg = f"Synthesis service error: {message}"
        if status_code:
            msg += f" (status: {status_code})"
        super().__init__(msg)


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================

class ConfigurationError(RecalibrationError):
    """
    Invalid configuration.

    Raised when:
    - A threshold is out of range
    - Window lengths are not strictly increasing
    - An unknown backend or allocation mode is requested

    Fatal at startup: the process refuses to run rather than silently
    substituting defaults.
    """

    def __init__(self, setting: str, message: str):
        self.setting = setting
        super().__init__(f"Configuration error ({setting}): {message}")
