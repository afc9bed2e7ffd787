"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ValidationError(DomainException):
    """Malformed or missing input; message is safe to show to the caller"""

    pass


class NotFound(DomainException):
    """Referenced entity does not exist"""

    def __init__(self, entity: str, identifier: str):
        super().__init__(f"{entity} not found: {identifier}")
        self.entity = entity
        self.identifier = identifier


class Conflict(DomainException):
    """Duplicate entity or disallowed state transition"""

    pass


class StorageUnavailable(DomainException):
    """Storage collaborator failed or timed out; caller may retry"""

    pass


class InternalError(DomainException):
    """Marker for failures that must be reported as internal errors and alerted on"""

    pass


class IntegrityViolation(InternalError):
    """Hash mismatch or broken pricing-table invariant"""

    pass


class NoMatchingTier(InternalError):
    """No pricing tier contains the score"""

    def __init__(self, score: int, version: str):
        super().__init__(f"No pricing tier for score {score} in parameters {version}")
        self.score = score
        self.version = version
