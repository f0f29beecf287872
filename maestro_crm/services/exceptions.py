class ServiceError(Exception):
    """Base exception for service layer failures."""

    def __init__(self, message: str, *, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class ValidationError(ServiceError):
    """Raised when input is malformed. Nothing has been written."""


class NotFoundError(ServiceError):
    """Raised when a referenced document does not exist."""

    def __init__(self, collection: str, document_id: str):
        super().__init__(f"{collection}/{document_id} not found")
        self.collection = collection
        self.document_id = document_id


class PreconditionError(ServiceError):
    """Raised when the current state of an entity refuses the operation."""


class InvalidTransitionError(PreconditionError):
    def __init__(self, entity: str, state: str, action: str):
        super().__init__(f"Cannot {action} a {entity} in status '{state}'")
        self.entity = entity
        self.state = state
        self.action = action


class MissingQuoteError(PreconditionError):
    """Raised when a service request has no resolvable approved quote."""


class OrphanQuoteError(PreconditionError):
    """Raised when a quote's service request reference does not resolve."""


class DeletionNotAllowedError(PreconditionError):
    """Raised when an entity's status does not allow deletion."""


class DeletionHasPaymentsError(PreconditionError):
    """Raised when deleting a service request that already has payments."""


class SelfRoleChangeError(PreconditionError):
    """Raised when an administrator tries to change their own role."""


class TransactionFailure(ServiceError):
    """Raised when the store rejects a batch. No write was persisted."""


class DownstreamServiceError(ServiceError):
    """Raised when an external service returns an error response."""

    def __init__(self, message: str, status_code: int | None = None, *, cause: Exception | None = None):
        super().__init__(message, cause=cause)
        self.status_code = status_code
