"""Log sanitization for Azure credentials and cloud-init payloads.

Exception text coming back from azure-identity or a failed request can echo
parts of the request. Anything that might carry a client secret, token or the
user-data payload is passed through LogSanitizer before it is logged or
wrapped into a DriverError.

Design Philosophy:
- Security first: err on side of over-redaction
- Pattern-based redaction for generic shapes, exact-value redaction for the
  secrets of the current invocation
"""

import re
from collections.abc import Iterable
from re import Pattern


class LogSanitizer:
    """Sanitize sensitive data from logs and error messages.

    All methods are class methods and can be called without instantiation.
    """

    REDACTED = "[REDACTED]"

    SECRET_PATTERNS: dict[str, Pattern] = {
        "client_secret_assignment": re.compile(
            r'(client[_-]?secret["\']?\s*[:=]\s*["\']?)([^\s"\'&,\)]+)',
            re.IGNORECASE,
        ),
        "client_secret_env": re.compile(
            r"(AZURE_CLIENT_SECRET)[\"']?\s*[:=]\s*[\"']?([^\s\"'&,\)]+)",
            re.IGNORECASE,
        ),
        "authorization_bearer": re.compile(r"(Authorization:\s*Bearer\s+)([^\s]+)", re.IGNORECASE),
        "access_token": re.compile(
            r'(access[_-]?token["\']?\s*[:=]\s*["\']?)([^\s"\'&,\)]+)',
            re.IGNORECASE,
        ),
        "custom_data": re.compile(
            r'((?:custom[_-]?data|user[_-]?data)["\']?\s*[:=]\s*["\']?)([^\s"\'&,\)]+)',
            re.IGNORECASE,
        ),
    }

    # Shortest value worth redacting verbatim; shorter strings would mangle text
    MIN_REDACT_LENGTH = 4

    @classmethod
    def sanitize(cls, message: str, secrets: Iterable[str] = ()) -> str:
        """Sanitize message by redacting sensitive patterns.

        Args:
            message: The message to sanitize
            secrets: Exact secret values to redact wherever they appear

        Returns:
            Sanitized message with secrets replaced by [REDACTED]

        Examples:
            >>> LogSanitizer.sanitize("client_secret=abc123")
            'client_secret=[REDACTED]'
            >>> LogSanitizer.sanitize("login failed for s3cr3t-value", ["s3cr3t-value"])
            'login failed for [REDACTED]'
        """
        if not isinstance(message, str):
            message = str(message)

        result = message
        for secret in secrets:
            if secret and len(secret) >= cls.MIN_REDACT_LENGTH:
                result = result.replace(secret, cls.REDACTED)

        for pattern in cls.SECRET_PATTERNS.values():
            result = pattern.sub(r"\1" + cls.REDACTED, result)
        return result

    @classmethod
    def sanitize_exception(cls, exc: BaseException, secrets: Iterable[str] = ()) -> str:
        """Sanitized ``str`` of an exception."""
        return cls.sanitize(str(exc), secrets)


__all__ = ["LogSanitizer"]
