"""Exceptions raised by the categorization core.

Every management operation validates its input completely before touching
state, so a raised ValidationError always means nothing was applied.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """The invariant a rejected request would have violated."""

    UNKNOWN_CATEGORY = "UNKNOWN_CATEGORY"
    UNKNOWN_TRANSACTION = "UNKNOWN_TRANSACTION"
    WEIGHT_OUT_OF_RANGE = "WEIGHT_OUT_OF_RANGE"
    CYCLIC_PARENT = "CYCLIC_PARENT"
    NAME_COLLISION = "NAME_COLLISION"
    REASSIGNMENT_REQUIRED = "REASSIGNMENT_REQUIRED"
    INVALID_REASSIGNMENT = "INVALID_REASSIGNMENT"
    BUILTIN_PROTECTED = "BUILTIN_PROTECTED"
    INVALID_NAME = "INVALID_NAME"
    INVALID_COLOR = "INVALID_COLOR"


class CategorizerError(Exception):
    """Base exception for the categorization core."""


class ValidationError(CategorizerError):
    """Raised when a request is rejected before any state mutation.

    Attributes:
        code: Which invariant the request violated
        message: Human readable explanation naming the offending values
    """

    def __init__(self, code: ErrorCode, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code.value}: {message}")

    @property
    def is_not_found(self) -> bool:
        return self.code in {ErrorCode.UNKNOWN_CATEGORY, ErrorCode.UNKNOWN_TRANSACTION}


class ConfigurationError(CategorizerError):
    """Raised when a rule, merchant or training data file cannot be loaded."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")
