# ingest/errors.py
# 每個例外都帶 HTTP status，API 層直接轉成 HTTPException


class IngestError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# 400
class ValidationError(IngestError):
    status_code = 400

class InvalidVideoId(ValidationError): pass
class MissingUpload(ValidationError): pass
class UnsupportedMediaType(ValidationError): pass
class PayloadTooLarge(ValidationError): pass


# 401 / 403
class AuthError(IngestError):
    status_code = 401

class Unauthorized(AuthError): pass

class Forbidden(AuthError):
    status_code = 403


# 404
class NotFound(IngestError):
    status_code = 404


# 500：輸入壞掉或工具不可用，不重試
class ProcessingError(IngestError):
    status_code = 500

class StagingError(ProcessingError): pass
class ProbeError(ProcessingError): pass
class InvalidDimensions(ProcessingError): pass
class RemuxError(ProcessingError): pass


# 500：交給呼叫端整個重送
class StorageError(IngestError):
    status_code = 500

class PublishError(StorageError): pass
class PersistenceError(StorageError): pass
