from typing import Optional, Any


class DirectoryError(Exception):
    """Base exception for identity directory failures."""
    def __init__(self, message: str, status_code: Optional[int] = None, details: Any = None):
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(f"[directory] {message} (Status: {status_code})")


class DirectoryUnavailableError(DirectoryError):
    """Raised when the directory is unreachable or returns a 5xx."""
    pass


class DirectoryTimeoutError(DirectoryUnavailableError):
    """Raised specifically on timeouts."""
    pass


class DirectoryAuthError(DirectoryError):
    """Raised when the directory rejects our credentials (401/403)."""
    pass
