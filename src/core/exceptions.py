# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Custom exceptions for the risk scoring and notification pipeline.

This module defines the exception hierarchy:
- RiskPipelineError: Base exception for all pipeline errors
- NotFoundError: Student or recipient cannot be located
- ConfigurationError: A channel transport is not available
- TransportError: A provider rejected a send
- ValidationError: Malformed recalculation input
- LockTimeoutError: Another run held a student's recalculation lock too long
"""


class RiskPipelineError(Exception):
    """Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional error context.
    """

    def __init__(self, message: str, details: dict | None = None):
        """Initialize pipeline error.

        Args:
            message: Human-readable error description.
            details: Optional dictionary with additional error context.
        """
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        """Return string representation with details if available."""
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message


class NotFoundError(RiskPipelineError):
    """Student or recipient does not exist.

    Fatal to the single operation that raised it.

    Attributes:
        resource: Kind of entity that was looked up.
        resource_id: Identifier that was not found.
    """

    def __init__(self, resource: str, resource_id: str, details: dict | None = None):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found: {resource_id}", details)


class ConfigurationError(RiskPipelineError):
    """A channel transport is not configured or not reachable.

    Attributes:
        channel: Channel whose transport is unavailable.
    """

    def __init__(self, channel: str, message: str, details: dict | None = None):
        self.channel = channel
        super().__init__(message, details)


class TransportError(RiskPipelineError):
    """A channel provider rejected or failed a send.

    Raised by delivery workers so the broker schedules a retry.

    Attributes:
        channel: Channel that failed.
        terminal: True when no automatic retry will follow.
    """

    def __init__(
        self,
        channel: str,
        message: str,
        terminal: bool = False,
        details: dict | None = None,
    ):
        self.channel = channel
        self.terminal = terminal
        super().__init__(message, details)


class ValidationError(RiskPipelineError):
    """Recalculation input was malformed.

    Attributes:
        fields: Names of the fields that failed validation.
    """

    def __init__(self, message: str, fields: list[str] | None = None, details: dict | None = None):
        self.fields = fields or []
        super().__init__(message, details)


class LockTimeoutError(RiskPipelineError):
    """Another recalculation held the student's lock past the wait timeout.

    Attributes:
        student_id: Student whose lock was busy.
        waited: Seconds spent waiting.
    """

    def __init__(self, student_id: str, waited: float | None, details: dict | None = None):
        self.student_id = student_id
        self.waited = waited
        super().__init__(
            f"Timed out after {waited}s waiting for the recalculation lock of student {student_id}",
            details,
        )
