# validation_exceptions.py
class ValidationError(TypeError):
    """Base class for errors raised when a builder call receives a malformed argument."""
    pass

class ValueRangeError(ValidationError, ValueError):
    """Error raised when a numeric argument (skip, limit) is negative or not an integer."""
    pass

class InvalidStageError(ValidationError, ValueError):
    """Error raised when an aggregation stage cannot be built from its arguments."""
    pass
