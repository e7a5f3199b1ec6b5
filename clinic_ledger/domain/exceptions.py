"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class NotFoundError(DomainException):
    """Plan, payment, patient or notification record does not exist"""

    pass


class AlreadyExistsError(DomainException):
    """Patient already has a payment plan"""

    pass


class InvalidAmountError(DomainException):
    """Amount is non-numeric or not strictly positive"""

    pass


class InvalidPlanTermsError(DomainException):
    """Plan terms are inconsistent with the plan type"""

    pass


class InvalidTransitionError(DomainException):
    """Requested status change is not allowed from the current status"""

    pass


class LockedError(DomainException):
    """Plan terms can only be changed by an administrator once the plan exists"""

    pass


class UnauthorizedError(DomainException):
    """Actor lacks permission for the module/action"""

    pass


class GatewayError(DomainException):
    """SMS gateway returned an error or is unavailable"""

    pass


class ConfigurationError(DomainException):
    """Required configuration (e.g. gateway credentials) is missing"""

    pass
