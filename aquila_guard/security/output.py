"""
AquilaGuard Security - Output sanitization.

Redacts credentials from free text, strips unsafe markup and recursively
sanitizes structured log context.
"""

from __future__ import annotations

import re
from typing import Any, Mapping

from .policy import SecurityPolicy


REDACTED = "[REDACTED]"
TRUNCATED = "... [TRUNCATED]"
SENSITIVE_KEY = "[SENSITIVE_KEY]"

# Redacted at every level.
CRITICAL_PATTERNS = [
    re.compile(r'(password["\s]*[:=]["\s]*)([^"\s<]+)', re.IGNORECASE),
    re.compile(r'(token["\s]*[:=]["\s]*)([^"\s<]+)', re.IGNORECASE),
]

SENSITIVE_PATTERNS = [
    # Credentials and secrets
    re.compile(r'password["\s]*[:=]["\s]*[^"\s<]+', re.IGNORECASE),
    re.compile(r'secret["\s]*[:=]["\s]*[^"\s<]+', re.IGNORECASE),
    re.compile(r'token["\s]*[:=]["\s]*[^"\s<]+', re.IGNORECASE),
    re.compile(r'api[_-]?key["\s]*[:=]["\s]*[^"\s<]+', re.IGNORECASE),
    re.compile(r'private[_-]?key["\s]*[:=]["\s]*[^"\s<]+', re.IGNORECASE),
    # Connection strings
    re.compile(r"mysql://[^@\s]+@[^/\s]+", re.IGNORECASE),
    re.compile(r"postgres(?:ql)?://[^@\s]+@[^/\s]+", re.IGNORECASE),
    re.compile(r"mongodb(?:\+srv)?://[^@\s]+@[^/\s]+", re.IGNORECASE),
    re.compile(r"redis://[^@\s]+@[^/\s]+", re.IGNORECASE),
    # Session identifiers
    re.compile(r'sessionid["\s]*[:=]["\s]*[a-zA-Z0-9]+', re.IGNORECASE),
    re.compile(r'session[_-]?id["\s]*[:=]["\s]*[a-zA-Z0-9]+', re.IGNORECASE),
    # Private IPv4 ranges
    re.compile(r"\b(?:10\.|172\.(?:1[6-9]|2[0-9]|3[01])\.|192\.168\.)\d{1,3}\.\d{1,3}\b"),
]

CREDENTIAL_PATTERNS = [
    # JSON
    re.compile(r'"(?:password|secret|token|key)":\s*"[^"]+"', re.IGNORECASE),
    # Dict / array literal
    re.compile(r"""\[['"](?:password|secret|token|key)['"]\]\s*(?:=>|=|:)\s*['"][^'"]+['"]""", re.IGNORECASE),
    # Environment variable
    re.compile(r"(?:PASSWORD|SECRET|TOKEN|KEY)=\S+", re.IGNORECASE),
]

SQL_PATTERNS = [
    (re.compile(r"SELECT\s+.*?\s+FROM\s+\w+", re.IGNORECASE), "[SQL_QUERY]"),
    (re.compile(r"INSERT\s+INTO\s+.*?\s+VALUES\s*\([^)]+\)", re.IGNORECASE), "[SQL_INSERT]"),
    (re.compile(r"UPDATE\s+\w+\s+SET\s+.*?\s+WHERE", re.IGNORECASE), "[SQL_UPDATE]"),
    (re.compile(r"DELETE\s+FROM\s+\w+", re.IGNORECASE), "[SQL_DELETE]"),
]

SENSITIVE_KEYS = ("password", "secret", "token", "key", "auth", "credential")

ALLOWED_TAGS = frozenset({
    "div", "p", "span", "pre", "code", "br", "strong", "em",
    "h1", "h2", "h3", "h4", "h5", "h6",
    "ul", "ol", "li", "details", "summary",
})

_BLOCK_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_DECLARATION_RE = re.compile(r"<[!?][^>]*>")
# Quoted attribute values may contain ">".
_TAG_RE = re.compile(r"""</?([a-zA-Z][a-zA-Z0-9]*)\b(?:"[^"]*"|'[^']*'|[^'">])*>""")
_TAG_START_RE = re.compile(r"<(?:/?[a-zA-Z]|[!?])")
_EVENT_ATTR_RE = re.compile(r"""[\s/]*\bon\w+\s*=\s*(?:"[^"]*"|'[^']*'|[^\s>]+)""", re.IGNORECASE)
_JS_URI_RE = re.compile(r"""\s*javascript\s*:\s*[^"'>\s]+""", re.IGNORECASE)
_DATA_URI_RE = re.compile(r"""\s*data\s*:\s*[^"'>\s]+""", re.IGNORECASE)
_STYLE_ATTR_RE = re.compile(r"""\s*style\s*=\s*(?:"[^"]*"|'[^']*')""", re.IGNORECASE)


class OutputSanitizer:
    """
    Sanitizes output to prevent information disclosure and XSS.

    Password and token values are redacted under every policy. Policies
    that sanitize messages add the broader pattern set, and policies with a
    message length limit truncate long messages.
    """

    def __init__(self, policy: SecurityPolicy):
        self.policy = policy

    # ------------------------------------------------------------------
    # Text
    # ------------------------------------------------------------------

    def sanitize(self, content: str, *, truncate: bool = True) -> str:
        """Sanitize markup for display: message redaction, tag filtering, CSP."""
        sanitized = self.sanitize_message(content, truncate=truncate)
        sanitized = self.sanitize_html(sanitized)
        return self.make_csp_compliant(sanitized)

    def sanitize_message(self, message: str, *, truncate: bool = True) -> str:
        """
        Redact credentials from free text.

        Args:
            message: Text to sanitize
            truncate: Apply the policy length limit
        """
        sanitized = message
        for pattern in CRITICAL_PATTERNS:
            sanitized = pattern.sub(lambda m: m.group(1) + REDACTED, sanitized)

        if self.policy.sanitize_messages:
            if self.policy.is_production:
                sanitized = self._sanitize_for_production(sanitized)
            elif self.policy.is_staging:
                sanitized = self._sanitize_for_staging(sanitized)

        max_length = self.policy.max_message_length
        if truncate and max_length > 0 and len(sanitized) > max_length:
            sanitized = sanitized[:max_length] + TRUNCATED

        return sanitized

    def _sanitize_for_production(self, message: str) -> str:
        for pattern in SENSITIVE_PATTERNS:
            message = pattern.sub(REDACTED, message)
        for pattern in CREDENTIAL_PATTERNS:
            message = pattern.sub("[CREDENTIALS]", message)
        for pattern, marker in SQL_PATTERNS:
            message = pattern.sub(marker, message)
        return message

    def _sanitize_for_staging(self, message: str) -> str:
        def keep_key(match: re.Match) -> str:
            key = re.split(r"[:=]", match.group(0), maxsplit=1)[0].strip(' "')
            return f"{key or 'SENSITIVE'}: {REDACTED}"

        for pattern in SENSITIVE_PATTERNS:
            message = pattern.sub(keep_key, message)
        return message

    # ------------------------------------------------------------------
    # Markup
    # ------------------------------------------------------------------

    def sanitize_html(self, content: str) -> str:
        """
        Keep only allow-listed tags and remove script vectors.

        An unterminated tag is dropped together with everything after it.
        """
        sanitized = _BLOCK_RE.sub("", content)
        sanitized = _COMMENT_RE.sub("", sanitized)
        sanitized = _DECLARATION_RE.sub("", sanitized)

        parts: list[str] = []
        position = 0
        while True:
            start = _TAG_START_RE.search(sanitized, position)
            if start is None:
                parts.append(sanitized[position:])
                break

            parts.append(sanitized[position:start.start()])
            tag = _TAG_RE.match(sanitized, start.start())
            if tag is None:
                break

            parts.append(self._filter_tag(tag))
            position = tag.end()

        return "".join(parts)

    @staticmethod
    def _filter_tag(match: re.Match) -> str:
        if match.group(1).lower() not in ALLOWED_TAGS:
            return ""
        # Attribute rules only apply inside tags; message text is left alone.
        tag = _EVENT_ATTR_RE.sub("", match.group(0))
        tag = _JS_URI_RE.sub("", tag)
        return _DATA_URI_RE.sub("", tag)

    def make_csp_compliant(self, content: str) -> str:
        if not self.policy.allow_inline_styles:
            content = _STYLE_ATTR_RE.sub("", content)
            content = content.replace("<div>", '<div class="error-container">')
            content = content.replace("<pre>", '<pre class="error-trace">')
        return content

    # ------------------------------------------------------------------
    # Structured context
    # ------------------------------------------------------------------

    def sanitize_context(self, context: Mapping[Any, Any]) -> dict[Any, Any]:
        """Recursively sanitize a log context mapping (keys and values)."""
        return {
            self._sanitize_key(key): self._sanitize_value(value)
            for key, value in context.items()
        }

    def _sanitize_key(self, key: Any) -> Any:
        if self.policy.is_production and isinstance(key, str):
            lowered = key.lower()
            if any(sensitive in lowered for sensitive in SENSITIVE_KEYS):
                return SENSITIVE_KEY
        return key

    def _sanitize_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.sanitize_message(value)
        if isinstance(value, Mapping):
            return self.sanitize_context(value)
        if isinstance(value, (list, tuple, set, frozenset)):
            return [self._sanitize_value(item) for item in value]
        if isinstance(value, BaseException):
            return {
                "class": type(value).__name__,
                "message": self.sanitize_message(str(value)),
                "code": getattr(value, "code", 0),
            }
        if isinstance(value, (int, float, bool, bytes)) or value is None:
            return value
        if hasattr(value, "__dict__"):
            return self.sanitize_context(vars(value))
        return value
