"""
Error taxonomy for the session manager.

Each error maps to one recovery policy:

- IdentifierNotFoundError: channel metadata had nothing to resolve;
  the caller asks the user to try again.
- NoPendingStateError: approvals submitted with nothing to resume.
- CorruptedStateError: the checkpoint could not be restored; it has
  already been deleted.
- ExecutorFailureError: the agent call failed or timed out.
- PersistenceFailureError: a durable write failed; always propagated.
- IdentityMergeError: the identity system rejected a merge.
- IdentityServiceError: an identity-graph call failed; only
  authenticated registrations propagate it.
"""


class SessionManagerError(Exception):
    """Base class for all session manager errors."""


class IdentifierNotFoundError(SessionManagerError):
    """Raised when metadata contains no usable subject identifier."""


class NoPendingStateError(SessionManagerError):
    """Raised when approvals arrive for a subject with no stored run-state."""

    def __init__(self, subject_id: str) -> None:
        super().__init__(f"No pending state found for subject '{subject_id}'")
        self.subject_id = subject_id


class CorruptedStateError(SessionManagerError):
    """Raised when a stored run-state cannot be restored."""

    def __init__(self, subject_id: str) -> None:
        super().__init__(
            f"Pending state for subject '{subject_id}' was corrupted, "
            "please restart your request"
        )
        self.subject_id = subject_id


class ExecutorFailureError(SessionManagerError):
    """Raised when the external agent executor fails or times out."""


class PersistenceFailureError(SessionManagerError):
    """Raised when a run-state write or delete fails."""


class IdentityMergeError(SessionManagerError):
    """Raised when two subject identities could not be merged."""


class UnknownStrategyError(SessionManagerError, KeyError):
    """Raised when a resolver or store name is not in its registration table."""


class IdentityServiceError(SessionManagerError):
    """Raised when the external identity graph rejects or fails a request."""
