class ObjectNotFoundException(Exception):
    """Exception raised when an object with the specified identifier does not exist."""

    def __init__(self, message: str = "The requested object was not found."):
        super().__init__(message)


class ModelConfigurationException(Exception):
    """Exception raised when a model's connection or collection is missing or invalid."""

    def __init__(self, message: str = "The model is not configured."):
        super().__init__(message)


class CursorStateException(Exception):
    """Exception raised when a cursor is consumed in a way its current state does not allow."""

    def __init__(self, message: str = "The cursor cannot be consumed in its current state."):
        super().__init__(message)
