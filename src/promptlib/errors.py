"""Error taxonomy shared by the server, the client and the OCR adapter."""


class PromptLibError(Exception):
    """Base class for expected failures. Carries the HTTP status it maps to."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailure(PromptLibError):
    """Missing or malformed input, caught before anything is persisted."""

    status_code = 400


class AuthFailure(PromptLibError):
    """Missing, malformed or expired session."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class InvalidCredentials(AuthFailure):
    """Unknown email or wrong password. The two cases are never distinguished."""

    def __init__(self):
        super().__init__("Invalid email or password")


class ConflictFailure(PromptLibError):
    status_code = 409


class EmailTaken(ConflictFailure):
    # The register endpoint has always answered 400 here
    status_code = 400

    def __init__(self):
        super().__init__("Email already registered")


class PromptExists(ConflictFailure):
    def __init__(self, prompt_id: str):
        super().__init__(f"Prompt {prompt_id} already exists")
        self.prompt_id = prompt_id


class NotFoundFailure(PromptLibError):
    status_code = 404


class ApiError(PromptLibError):
    """Non-2xx response or transport failure seen by the HTTP client."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


class AuthExpired(ApiError):
    """The server answered 401. Only the application shell reacts to this."""

    def __init__(self, return_to: str | None = None):
        super().__init__("Unauthorized", status_code=401)
        self.return_to = return_to


class OcrCancelled(PromptLibError):
    """Recognition was cancelled through its job handle."""

    status_code = 499

    def __init__(self):
        super().__init__("OCR cancelled")


class OcrFailure(PromptLibError):
    """The recognition engine is missing or failed to run."""

    status_code = 503
