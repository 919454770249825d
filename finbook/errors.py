class ValidationError(ValueError):
    """Raised when input is rejected before it reaches the store."""
