"""
AquilaGuard Security - Path sanitization.

Reduces file paths and class names to the disclosure level a policy allows.
"""

from __future__ import annotations

import re

from .policy import SecurityPolicy


SENSITIVE_PATH_PATTERNS = [
    re.compile(r"/\.env"),
    re.compile(r"/config/database"),
    re.compile(r"/vendor/"),
    re.compile(r"/node_modules/"),
    re.compile(r"/site-packages/"),
    re.compile(r"/dist-packages/"),
    re.compile(r"/\.git/"),
    re.compile(r"/storage/"),
    re.compile(r"/cache/"),
    re.compile(r"/__pycache__/"),
    re.compile(r"/tmp/"),
    re.compile(r"/temp/"),
]


def basename(path: str) -> str:
    """Final path segment; accepts both ``/`` and ``\\`` separators."""
    return path.replace("\\", "/").rstrip("/").split("/")[-1]


class PathSanitizer:
    """
    Sanitizes file paths to prevent information disclosure.

    - Development: paths unchanged
    - Staging: paths relative to the project root, prefixed with ``...``
    - Production: base name only
    """

    def __init__(self, policy: SecurityPolicy):
        self.policy = policy

    def sanitize_path(self, path: str) -> str:
        if self.policy.show_full_paths:
            return path

        if self.policy.is_production:
            return basename(path)

        if self.policy.is_staging:
            return self._relative_to_root(path)

        return path

    # Shorter alias used by handlers and tests
    sanitize = sanitize_path

    def sanitize_class_name(self, class_name: str) -> str:
        """Drop module/namespace qualifiers from a class name in production."""
        if self.policy.is_production:
            return re.split(r"[.\\]", class_name)[-1]
        return class_name

    def _relative_to_root(self, path: str) -> str:
        root = self.policy.project_root.rstrip("/\\")
        # Match whole directories only; "/app" must not claim "/application".
        if root and path.startswith((root + "/", root + "\\")):
            return "..." + path[len(root):]
        return basename(path)

    @staticmethod
    def is_sensitive_path(path: str) -> bool:
        """Check if a path points into dependencies, secrets or caches."""
        normalized = path.replace("\\", "/")
        return any(pattern.search(normalized) for pattern in SENSITIVE_PATH_PATTERNS)
