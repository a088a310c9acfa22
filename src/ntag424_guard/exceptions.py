class NtagError(Exception):
    """Base exception for NTAG424 operations."""
    pass

class TagConnectionError(NtagError):
    """Raised when connection to the tag fails."""
    pass

class AuthenticationError(NtagError):
    """Raised when a secure command is issued without an authenticated session."""
    pass

class CommandError(NtagError):
    """Raised when a card command returns an error status."""

    def __init__(self, message, sw1=None, sw2=None):
        super().__init__(message)
        self.sw1 = sw1
        self.sw2 = sw2

class InvalidBlockSize(NtagError, ValueError):
    """Raised when the block cipher is handed a key or block that is not 16 bytes."""
    pass

class IrreversiblePolicy(NtagError, ValueError):
    """Raised when an access policy would remove every way to change it again."""
    pass

class TagBusy(NtagError):
    """Raised when another operation is already in flight for the same tag."""
    pass

class ConfigurationError(NtagError, ValueError):
    """Raised when a configured key or setting cannot be parsed."""
    pass
