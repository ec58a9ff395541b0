"""Error definitions for chunkdrive.

``DriveError`` subclasses are raised by pipelines and handlers and rendered
by the application's exception handler as a JSON body with a status code.
Storage-layer errors (``ChunkStoreError``) stay internal: pipelines translate
them before they reach a caller.
"""

# Messages longer than this are cut when rendered to a client.
MAX_MESSAGE_LENGTH = 200


class DriveError(Exception):
    """A client-visible error with code, message, and HTTP status.

    Attributes:
        code: Stable machine-readable error code (e.g. "NotFound").
        message: Human-readable error description.
        http_status: The HTTP status code to return.
    """

    def __init__(self, code: str, message: str, http_status: int = 400) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status

    def to_dict(self, request_id: str = "") -> dict:
        """Render the error as a JSON-serializable dict."""
        message = self.message
        if len(message) > MAX_MESSAGE_LENGTH:
            message = message[:MAX_MESSAGE_LENGTH]
        return {"error": {"code": self.code, "message": message, "requestId": request_id}}


class BadInput(DriveError):
    """A request field is missing or malformed."""

    def __init__(self, message: str = "Bad Request") -> None:
        super().__init__(code="BadInput", message=message, http_status=400)


class Unauthorized(DriveError):
    """The request requires a signed-in caller."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(code="Unauthorized", message=message, http_status=401)


class Forbidden(DriveError):
    """The access gate denied the request."""

    def __init__(self, message: str = "Forbidden") -> None:
        super().__init__(code="Forbidden", message=message, http_status=403)


class NotFound(DriveError):
    """The requested object does not exist (or must not be disclosed)."""

    def __init__(self, message: str = "Not Found") -> None:
        super().__init__(code="NotFound", message=message, http_status=404)


class EmailInUse(DriveError):
    """Signup with an email that already has an account."""

    def __init__(self, message: str = "Email already in use") -> None:
        super().__init__(code="EmailInUse", message=message, http_status=409)


class FileTooLarge(DriveError):
    """The upload exceeds the configured maximum size."""

    def __init__(self, limit: int) -> None:
        super().__init__(
            code="FileTooLarge",
            message=f"File exceeds the maximum upload size of {limit} bytes",
            http_status=413,
        )
        self.limit = limit


class InvalidRange(DriveError):
    """The requested byte range is not satisfiable."""

    def __init__(self, message: str = "The requested range is not satisfiable.") -> None:
        super().__init__(code="InvalidRange", message=message, http_status=416)


class UploadFailed(DriveError):
    """Writing the chunk set or catalog record failed."""

    def __init__(self, message: str = "Upload failed") -> None:
        super().__init__(code="UploadFailed", message=message, http_status=500)


class InternalError(DriveError):
    """An internal server error occurred."""

    def __init__(self, message: str = "Internal Error") -> None:
        super().__init__(code="InternalError", message=message, http_status=500)


# -- Storage layer ------------------------------------------------------------


class ChunkStoreError(Exception):
    """The chunk store failed to read or write a chunk set."""


class ChunkSetNotFound(ChunkStoreError):
    """No chunk set header exists for the given id."""

    def __init__(self, chunk_set_id: str) -> None:
        super().__init__(f"Chunk set not found: {chunk_set_id}")
        self.chunk_set_id = chunk_set_id
