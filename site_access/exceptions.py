class AccessControlError(Exception):
    """Base exception for the access control service."""

    code = "access_error"
    status_code = 400


class NoCandidatesAvailable(AccessControlError):
    """Raised when no person at the site has a usable stored descriptor for the action."""

    code = "no_candidates"
    status_code = 200


class NoMatchFound(AccessControlError):
    """Raised when the live descriptor is not within threshold of any candidate."""

    code = "no_match"
    status_code = 200


class NoFaceDetected(AccessControlError):
    """Raised when the embedding provider finds no confident face in the frame."""

    code = "no_face"
    status_code = 200


class InvalidTransition(AccessControlError):
    """Raised when the person is already in the target state at commit time."""

    code = "invalid_transition"
    status_code = 409


class DuplicateSubmission(AccessControlError):
    """Raised when the same transition was recorded inside the trailing window."""

    code = "duplicate_submission"
    status_code = 200


class BackendUnavailable(AccessControlError):
    """Raised when the persistence backend cannot be reached or fails."""

    code = "backend_unavailable"
    status_code = 503


class PersonNotFound(AccessControlError):
    code = "person_not_found"
    status_code = 404


class SessionNotFound(AccessControlError):
    code = "session_not_found"
    status_code = 404


class InvalidDescriptor(AccessControlError):
    """Raised when a face descriptor has the wrong shape or non-finite values."""

    code = "invalid_descriptor"
    status_code = 422


class ValidationFailed(AccessControlError):
    code = "validation_failed"
    status_code = 422


class EmbeddingError(AccessControlError):
    """Raised when the embedding provider cannot be loaded or fails on a frame."""

    code = "embedding_error"
    status_code = 503


class RecordInUse(AccessControlError):
    """Raised when a row cannot be removed because other records still reference it."""

    code = "record_in_use"
    status_code = 409
