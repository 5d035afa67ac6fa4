class GutSafeSyncError(Exception):
    pass

class PersistenceError(GutSafeSyncError):
    def __init__(self , operation):
        self.operation = operation
        message = f"Persistence_error  = {operation}"
        super().__init__(message)

class EntryNotFoundError(GutSafeSyncError):
    def __init__(self , entry_id):
        self.entry_id = entry_id
        message = f"Queue entry {entry_id} not found"
        super().__init__(message)

class InvalidSyncStateError(GutSafeSyncError):
    def __init__(self , state):
        self.state = state
        message = f"Invalid Sync State {state}"
        super().__init__(message)

class EncryptionError(GutSafeSyncError):
    def __init__(self , reason):
        message = f"Encryption failed: {reason}"
        super().__init__(message)

class DecryptionError(GutSafeSyncError):
    def __init__(self , reason, field=None):
        self.reason = reason
        self.field = field
        where = f" for field {field}" if field is not None else ""
        message = f"Decryption failed{where}: {reason}"
        super().__init__(message)

class ConfigurationError(GutSafeSyncError):
    def __init__(self , setting):
        self.setting = setting
        message = f"Missing or invalid setting {setting}"
        super().__init__(message)


class SubmissionError(GutSafeSyncError):
    pass

class TransientSubmissionError(SubmissionError):
    def __init__(self , client_id, reason):
        self.client_id = client_id
        message = f"Transient failure submitting {client_id}: {reason}"
        super().__init__(message)

class SubmissionRejectedError(SubmissionError):
    def __init__(self, client_id, status_code, detail=""):
        self.client_id = client_id
        self.status_code = status_code
        self.detail = detail
        message = f"Remote rejected {client_id} with {status_code}: {detail}"
        super().__init__(message)


class ServerDatabaseError(Exception):
    pass

class IngestError(ServerDatabaseError):
    def __init__(self , message):
        super().__init__(message)

class ConnectionPoolError(ServerDatabaseError):
    def __init__(self , message):
        super().__init__(message)
