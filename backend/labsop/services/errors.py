"""Error taxonomy shared by the SOP configuration services."""

from __future__ import annotations

# purpose: typed failures raised by SOP editor, version lifecycle and comparison services
# status: pilot


class SOPConfigError(RuntimeError):
    """Base error for SOP configuration orchestration."""


class InvalidConfiguration(SOPConfigError):
    """Raised when supplied input is malformed or violates a scoped uniqueness rule."""


class ReferentialIntegrityViolation(SOPConfigError):
    """Raised when an operation would leave a dangling reference behind."""


class ConfigurationConflict(SOPConfigError):
    """Raised when current state held by another entity blocks the operation."""


class InvalidTransition(SOPConfigError):
    """Raised when a version lifecycle transition is not permitted from its current status."""


class SOPNotFound(SOPConfigError):
    """Raised when a template, step, field, QC point or version cannot be located."""
