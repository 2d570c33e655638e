class DbStudioError(Exception):
    """Base exception for dbstudio."""

class ValidationError(DbStudioError):
    """Bad identifier, missing required field or bad paging input."""

class ConnectionFailedError(DbStudioError):
    pass

class DecryptionError(DbStudioError):
    """Envelope did not authenticate (tampered data or wrong key)."""

class EnvelopeFormatError(DecryptionError):
    pass

class NotFoundError(DbStudioError):
    pass

class UnsupportedOperationError(DbStudioError):
    pass

class VaultError(DbStudioError):
    pass

class ExportError(DbStudioError):
    pass
