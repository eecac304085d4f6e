"""
Custom Exception Hierarchy - Domain-specific error types

Provides clear, typed exceptions for the failure modes of a common ground
analysis run. All custom exceptions inherit from CommonGroundError.

Scope of each error:
- InputValidationError: malformed top-level input, fails the whole call
- PartitionInvariantViolation: one area is inconsistent, area skipped
- InsufficientDataError: one area has nothing to analyze, silently excluded
- ConfigurationError: invalid environment defaults
"""

from typing import Optional, Dict, Any, List


class CommonGroundError(Exception):
    """Base exception for all engine errors

    All custom exceptions inherit from this, enabling:
    - Catch all engine errors with single except clause
    - Distinguish our errors from library errors
    - Carry a context dict for structured logging
    """

    # The engine is a pure function of its inputs: retrying with the same
    # snapshot reproduces the same failure.
    _retryable: bool = False

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        """Check if this error represents a transient failure that should be retried."""
        return self._retryable

    def __str__(self):
        base_msg = super().__str__()
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{base_msg} (context: {context_str})"
        return base_msg


# ========== Input Errors ==========


class InputValidationError(CommonGroundError):
    """Malformed input records

    Examples:
    - Missing topic id
    - Empty propositions list
    - Any rejected record when the run is strict

    failures holds one RecordFailure per rejected record so the caller can
    report which records failed and why.
    """

    def __init__(self, message: str, failures: Optional[List[Any]] = None):
        self.failures = list(failures or [])
        context = {}
        if self.failures:
            context["failure_count"] = len(self.failures)
        super().__init__(message, context)


# ========== Area Errors ==========


class AreaError(CommonGroundError):
    """Failure scoped to a single discussion area

    The assembler catches these, records a diagnostic for the area and keeps
    going with the rest of the topic.
    """

    reason: str = "area_error"

    def __init__(self, message: str, area_id: str, context: Optional[Dict[str, Any]] = None):
        self.area_id = area_id
        merged = {"area_id": area_id}
        merged.update(context or {})
        super().__init__(message, merged)


class PartitionInvariantViolation(AreaError):
    """Support/oppose/neutral sets do not partition an area's voters

    Examples:
    - A participant appears in two of the three sets
    - A voter is missing from every set
    - agreement_percentage disagrees with the partition sizes
    """

    reason = "partition_invariant_violation"

    def __init__(self, message: str, area_id: str, proposition_id: Optional[str] = None):
        self.proposition_id = proposition_id
        context = {}
        if proposition_id:
            context["proposition_id"] = proposition_id
        super().__init__(message, area_id, context)


class InsufficientDataError(AreaError):
    """Area has nothing to analyze (zero votes or zero term observations)

    Not a failure: the area is excluded and noted as a silent diagnostic.
    """

    reason = "insufficient_data"


class InvalidDistanceError(AreaError):
    """Injected semantic distance returned a non-finite value"""

    reason = "invalid_distance"

    def __init__(self, message: str, area_id: str, term: Optional[str] = None):
        self.term = term
        context = {}
        if term:
            context["term"] = term
        super().__init__(message, area_id, context)


# ========== Configuration Errors ==========


class ConfigurationError(CommonGroundError):
    """Configuration or environment errors

    Examples:
    - Threshold outside [0, 1]
    - Non-numeric environment value
    """

    def __init__(self, message: str, config_key: Optional[str] = None):
        self.config_key = config_key
        context = {}
        if config_key:
            context['config_key'] = config_key
        super().__init__(message, context)
