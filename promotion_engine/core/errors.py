# promotion_engine/core/errors.py

# -----------------------------
# Base Errors
# -----------------------------

class PromotionError(Exception):
    """Base class for all promotion engine errors."""
    pass


# -----------------------------
# Configuration / Plan Errors
# -----------------------------

class ConfigurationError(PromotionError):
    """Required configuration missing or inconsistent."""
    pass


class PlanValidationError(PromotionError):
    """Plan cannot be built from the requested policy."""
    pass


# -----------------------------
# Release Source Errors
# -----------------------------

class ReleaseSourceError(PromotionError):
    pass


class ReleaseUnavailableError(ReleaseSourceError):
    """Release metadata could not be fetched (transient)."""
    pass


class ReleaseNotFoundError(ReleaseSourceError):
    """Requested release tag does not exist upstream."""
    pass


class ArtifactFetchError(ReleaseSourceError):
    """Artifact missing from the release or download failed."""
    pass


# -----------------------------
# Cutover Errors
# -----------------------------

class PlatformOperationError(PromotionError):
    """A target-platform operation failed."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation}: {message}")


class HealthCheckFailed(PromotionError):
    """Green instance did not become healthy in time."""
    pass


class InvalidCutoverTransition(PromotionError):
    """Illegal cutover phase transition attempted."""
    pass


# -----------------------------
# Ledger Errors
# -----------------------------

class LedgerError(PromotionError):
    pass


# -----------------------------
# Approval / Run Errors
# -----------------------------

class ApprovalError(PromotionError):
    pass


class UnauthorizedReviewerError(ApprovalError):
    """Signal sent by an identity that is not a configured reviewer."""
    pass


class NoPendingApprovalError(ApprovalError):
    """No run with this id is waiting at the approval gate."""
    pass


class RunNotFound(PromotionError):
    pass
