# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Custom exceptions for pkgengine.

All exceptions inherit from PkgEngineError for consistent error handling.

Resolution errors never mutate state: the caller can adjust the request and
retry. Transaction errors raised before committing leave the live
filesystem untouched. CommitFailedError is the only fatal class and
requires the recovery pass.
"""

from typing import Optional, List


class PkgEngineError(Exception):
    """Base exception for all pkgengine errors."""

    recoverable = True

    def __init__(self, message: str, details: Optional[dict] = None):
        """
        Initialize pkgengine error.

        Args:
            message: Human-readable error message
            details: Additional error details
        """
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert error to dictionary for reporting."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "recoverable": self.recoverable,
            "details": self.details
        }


class NotFoundError(PkgEngineError):
    """Unknown catalog or package reference."""

    def __init__(self, resource: str, identifier: str, details: Optional[dict] = None):
        """
        Initialize not found error.

        Args:
            resource: Type of resource (e.g., "Catalog", "Package")
            identifier: Resource identifier
            details: Additional error details
        """
        message = f"{resource} not found: {identifier}"
        super().__init__(message, details=details)
        self.resource = resource
        self.identifier = identifier


class ValidationError(PkgEngineError):
    """Invalid request or malformed metadata."""

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, details=details)
        self.field = field


class ConfigurationError(PkgEngineError):
    """Configuration error."""

    def __init__(self, message: str, config_file: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, details=details)
        self.config_file = config_file


# =============================================================================
# Resolution errors
# =============================================================================

class ResolutionError(PkgEngineError):
    """Base class for errors raised while computing a change plan."""


class UnresolvableDependencyError(ResolutionError):
    """No installed, selected or catalog package satisfies a constraint."""

    def __init__(self, constraint, required_by: Optional[str] = None):
        """
        Args:
            constraint: The unsatisfied Constraint
            required_by: Package key that declared it (None for a requested pin)
        """
        source = f" (required by {required_by})" if required_by else ""
        super().__init__(
            f"Unresolvable dependency: {constraint}{source}",
            details={"constraint": str(constraint), "required_by": required_by}
        )
        self.constraint = constraint
        self.required_by = required_by


class ConflictDetectedError(ResolutionError):
    """Two packages of the final installed set conflict."""

    def __init__(self, package: str, other: str, constraint=None):
        super().__init__(
            f"Conflict detected: {package} conflicts with {other}",
            details={
                "package": package,
                "other": other,
                "constraint": str(constraint) if constraint else None
            }
        )
        self.package = package
        self.other = other
        self.constraint = constraint


class VersionPinConflictError(ResolutionError):
    """A version change would break a constraint of a remaining package."""

    def __init__(self, package: str, constraint, required_by: str):
        super().__init__(
            f"Version change of {package} breaks {constraint} required by {required_by}",
            details={
                "package": package,
                "constraint": str(constraint),
                "required_by": required_by
            }
        )
        self.package = package
        self.constraint = constraint
        self.required_by = required_by


# =============================================================================
# Transaction errors
# =============================================================================

class TransactionError(PkgEngineError):
    """Base class for errors raised while applying a change plan."""

    def __init__(self, message: str, transaction_id: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, details=details)
        self.transaction_id = transaction_id


class StagingFailedError(TransactionError):
    """An action failed before any live path was touched."""

    def __init__(self, action: str, cause: Exception, transaction_id: Optional[str] = None):
        super().__init__(
            f"Staging failed for {action}: {cause}",
            transaction_id=transaction_id,
            details={"action": action, "cause": str(cause)}
        )
        self.action = action
        self.cause = cause


class TransactionCancelledError(TransactionError):
    """Transaction cancelled before committing started."""


class CommitFailedError(TransactionError):
    """Live mutation failed part way; a recovery pass is required."""

    recoverable = False

    def __init__(
        self,
        action: str,
        cause: Exception,
        completed: List[str],
        transaction_id: Optional[str] = None
    ):
        super().__init__(
            f"Commit failed for {action}: {cause} "
            f"({len(completed)} action(s) already applied, recovery required)",
            transaction_id=transaction_id,
            details={"action": action, "cause": str(cause), "completed": list(completed)}
        )
        self.action = action
        self.cause = cause
        self.completed = list(completed)


class StoreBusyError(TransactionError):
    """Another transaction holds the database lock."""


class RecoveryRequiredError(TransactionError):
    """An interrupted transaction must be recovered before a new one starts."""

    recoverable = False


class RecoveryError(TransactionError):
    """Recovery pass could not complete; manual intervention required."""

    recoverable = False


# =============================================================================
# Collaborator errors
# =============================================================================

class CollaboratorError(PkgEngineError):
    """Failure reported by fetch, verify, extract or filesystem collaborators."""


class FetchError(CollaboratorError):
    """Package or catalog could not be fetched."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"Failed to fetch {source}: {reason}", details={"source": source})
        self.source = source


class VerificationError(CollaboratorError):
    """Signature missing or invalid."""


class ExtractError(CollaboratorError):
    """Archive could not be extracted."""


class FilesystemError(CollaboratorError):
    """Filesystem primitive failed on a path."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Filesystem error on {path}: {reason}", details={"path": path})
        self.path = path
