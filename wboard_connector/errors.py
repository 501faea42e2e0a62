"""
Error taxonomy for request verification and autologin.
Each error carries a stable code, the HTTP status it maps to, and a message safe to return.
"""


class WBoardError(Exception):
    code = "wboard_error"
    status_code = 500
    message = "Internal error."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        if message:
            self.message = message

    def to_detail(self) -> dict:
        return {"error": self.code, "error_description": self.message}


class RateLimited(WBoardError):
    code = "wboard_rate_limit_exceeded"
    status_code = 429
    message = "Too many requests. Try again in a minute."

    def __init__(self, retry_after: int, message: str | None = None, *, repeated: bool = False):
        super().__init__(message)
        self.retry_after = retry_after
        # True once the client has already been refused in this window
        self.repeated = repeated


class MissingHeaders(WBoardError):
    code = "wboard_missing_headers"
    status_code = 401
    message = "Missing security headers."


class InvalidTimestamp(WBoardError):
    code = "wboard_invalid_timestamp"
    status_code = 401
    message = "Expired or invalid timestamp."


class InvalidSignature(WBoardError):
    code = "wboard_invalid_signature"
    status_code = 401
    message = "Invalid signature."


class NoSecretKey(WBoardError):
    # Deployment fault, not a client fault
    code = "wboard_no_secret_key"
    status_code = 500
    message = "Secret key not configured."


class UserNotFound(WBoardError):
    code = "wboard_user_not_found"
    status_code = 404
    message = "User not found."


class NotAdministrator(WBoardError):
    code = "wboard_not_admin"
    status_code = 403
    message = "Only administrators can use autologin."


class MissingUserId(WBoardError):
    code = "wboard_missing_user_id"
    status_code = 400
    message = "user_id is required."
