"""
Error types shared by the providers, repositories and services.
"""


class SquirrelError(Exception):
    """Base exception for all knowledge store errors."""
    pass


class ProviderNotConfiguredError(SquirrelError):
    """A remote provider or backend is missing its credential."""
    pass


class ProviderUnavailableError(SquirrelError):
    """A capability is not reachable or was never initialized."""
    pass


class StorageError(SquirrelError):
    """A storage backend rejected an operation."""
    pass


class NoteNotFoundError(SquirrelError, LookupError):
    def __init__(self, note_id: str):
        super().__init__(f"Note with id {note_id} not found")
        self.note_id = note_id


class UpstreamError(SquirrelError):
    """
    A remote call failed after the provider was initialized.

    Always raised with ``raise ... from`` so the original exception stays
    attached as ``__cause__``.
    """

    def __init__(self, provider: str, operation: str, message: str = ""):
        detail = f"{provider} {operation} failed"
        if message:
            detail = f"{detail}: {message}"
        super().__init__(detail)
        self.provider = provider
        self.operation = operation
