"""
Error translation utilities for user-friendly error messages.
"""
from typing import Any, Dict, Optional, Tuple


class ErrorTranslator:
    """
    Translates API and system errors into user-facing title/message pairs.
    """

    # Error message mappings
    ERROR_MESSAGES = {
        # Authentication errors
        "invalid_credentials": "Invalid email or password",
        "invalid_token": "Your session has expired. Please log in again",
        "token_expired": "Your session has expired. Please log in again",
        "unauthorized": "You are not authorized to perform this action",
        "permission_denied": "You don't have permission to access this resource",
        "account_blocked": "Your account has been blocked. Please contact the administrator",

        # Network errors
        "connection_error": "Unable to connect to server. Please check your internet connection",
        "timeout": "Request timed out. Please try again",
        "network_error": "Network error occurred. Please try again",

        # API errors
        "server_error": "Server error occurred. Please try again later",
        "bad_request": "Invalid request. Please check your input",
        "not_found": "Resource not found",
        "rate_limit_exceeded": "Too many requests. Please wait a moment and try again",
    }

    STATUS_CODES = {
        400: "bad_request",
        401: "unauthorized",
        403: "permission_denied",
        404: "not_found",
        429: "rate_limit_exceeded",
    }

    STATUS_TITLES = {
        400: "Request Error",
        401: "Authentication Error",
        403: "Access Denied",
        404: "Not Found",
        429: "Too Many Requests",
    }

    @classmethod
    def translate(cls, error: Any, default_message: str = "An error occurred") -> str:
        """
        Translate an error to a user-friendly message.

        Args:
            error: Error object (can be string, dict, or exception)
            default_message: Default message if translation not found

        Returns:
            User-friendly error message
        """
        if isinstance(error, str):
            return cls.ERROR_MESSAGES.get(error, error or default_message)

        if isinstance(error, dict):
            error_code = error.get('code', '')
            if error_code and error_code in cls.ERROR_MESSAGES:
                return cls.ERROR_MESSAGES[error_code]
            return error.get('message') or error.get('detail') or default_message

        if isinstance(error, Exception):
            error_str = str(error).lower()
            if 'connection' in error_str or 'refused' in error_str:
                return cls.ERROR_MESSAGES['connection_error']
            if 'timeout' in error_str or 'timed out' in error_str:
                return cls.ERROR_MESSAGES['timeout']
            return str(error) or default_message

        return default_message

    @classmethod
    def from_response(cls, status_code: Optional[int], payload: Any) -> Tuple[str, str]:
        """
        Build a (title, message) pair from a failed HTTP response.

        The backend sends ``{"error": <title>, "message": <text>}``; missing
        parts are filled from the status code.
        """
        body: Dict[str, Any] = payload if isinstance(payload, dict) else {}

        title = body.get('error') if isinstance(body.get('error'), str) else None
        if not title:
            if status_code is not None and status_code >= 500:
                title = "Server Error"
            else:
                title = cls.STATUS_TITLES.get(status_code, "Error")

        message = body.get('message') or body.get('detail')
        if not message:
            if status_code is not None and status_code >= 500:
                message = cls.ERROR_MESSAGES['server_error']
            else:
                code = cls.STATUS_CODES.get(status_code)
                message = cls.ERROR_MESSAGES.get(code, "An error occurred") if code else "An error occurred"
        return title, str(message)


# Global instance
error_translator = ErrorTranslator()
