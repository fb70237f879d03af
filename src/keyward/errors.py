"""Error taxonomy shared by services and routes.

Learn: Services raise these; routes translate them into HTTPException
with the attached status code. Messages are terse and safe to show to
clients — internal details go to the log, never into the response.
"""


class KeywardError(Exception):
    """Base class. `status_code` is the HTTP status the error maps to."""

    status_code = 500
    message = "Internal error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)

    @property
    def detail(self) -> str:
        return str(self)


class ValidationError(KeywardError):
    status_code = 400
    message = "Invalid request"


class AuthError(KeywardError):
    status_code = 401
    message = "Authentication required"


class AuthFailed(AuthError):
    message = "Invalid credentials"


class MissingToken(AuthError):
    message = "Missing or invalid Authorization header"


class TokenInvalid(AuthError):
    message = "Invalid token"


class TokenExpired(AuthError):
    message = "Token has expired"


class InvalidClient(AuthError):
    message = "Invalid client"


class AuthorizationError(KeywardError):
    status_code = 403
    message = "Admin only"


class NotFoundError(KeywardError):
    status_code = 404
    message = "Not found"


class ConflictError(KeywardError):
    status_code = 409
    message = "Already exists"


class InternalError(KeywardError):
    status_code = 500


# ─── WebAuthn ceremony ──────────────────────────────────


class CeremonyError(ValidationError):
    """Any failure while resolving or verifying a registration ceremony."""

    message = "Registration ceremony failed"


class SessionNotFound(CeremonyError):
    message = "Unknown registration session"


class SessionExpired(CeremonyError):
    message = "Registration session expired"


class AccountMismatch(CeremonyError):
    message = "Registration session belongs to another account"


class ChallengeMismatch(CeremonyError):
    message = "Challenge mismatch"


class OriginMismatch(CeremonyError):
    message = "Origin not allowed"


class ResponseDecodeError(CeremonyError):
    message = "Malformed attestation response"


class ResponseVerificationError(CeremonyError):
    message = "Attestation response rejected"
