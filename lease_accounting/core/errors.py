"""
Lease engine error taxonomy

Configuration errors fail fast before any schedule exists. Arithmetic
integrity errors carry every generated row for audit review. Modification
errors reject the modification and leave the prior schedule untouched.
"""

from typing import Any, Optional, Sequence


class LeaseEngineError(Exception):
    """Base error; context holds diagnostic rows or values"""

    def __init__(self, message: str, lease_id: Optional[str] = None, context: Optional[Sequence[Any]] = None):
        super().__init__(message)
        self.message = message
        self.lease_id = lease_id
        self.context = list(context) if context else []

    def __reduce__(self):
        # keep lease_id and context when crossing a process boundary
        return (self.__class__, (self.message, self.lease_id, self.context))


class ConfigurationError(LeaseEngineError):
    pass


class InvalidRate(ConfigurationError):
    pass


class InvalidTerm(ConfigurationError):
    pass


class MissingScheduleSegment(ConfigurationError):
    pass


class CurrencyMismatch(ConfigurationError):
    pass


class ArithmeticIntegrityError(LeaseEngineError):
    pass


class ClosureMismatch(ArithmeticIntegrityError):
    pass


class NegativeROUAsset(ArithmeticIntegrityError):
    pass


class ModificationError(LeaseEngineError):
    pass


class ModificationBeforeCommencement(ModificationError):
    pass


class OverlappingScheduleSegments(ModificationError):
    pass


class InvalidStatusTransition(LeaseEngineError):
    pass


class UnknownLease(LeaseEngineError):
    pass
