"""
Error types for a retention run.

Fatal errors (configuration, connectivity) stop the run before any deletion
and carry hints the operator can act on. Recoverable errors (tag fetch,
digest delete) are absorbed at the repository or digest boundary and only
reported.
"""

from enum import Enum
from typing import Any, Dict, Iterable, Optional


class ErrorCategory(Enum):
    CONFIGURATION = "configuration"
    CONNECTION = "connection"
    AUTHENTICATION = "authentication"


class ActionableError(Exception):
    """Fatal error with hints for the operator"""

    category = ErrorCategory.CONFIGURATION

    def __init__(self, message: str, hints: Optional[Iterable[str]] = None,
                 context: Optional[Dict[str, Any]] = None, category: Optional[ErrorCategory] = None):
        """
        Args:
            message: What went wrong, in one line
            hints: Things to check, most likely first
            context: Values worth showing next to the message
            category: Overrides the class default
        """
        self.message = message
        self.hints = list(hints or [])
        self.context = dict(context or {})
        if category is not None:
            self.category = category
        super().__init__(self.render())

    def render(self) -> str:
        lines = [self.message]
        if self.hints:
            lines.append("Try:")
            lines.extend(f"  - {hint}" for hint in self.hints)
        if self.context:
            lines.extend(f"  {key}: {value}" for key, value in self.context.items())
        return "\n".join(lines)


class ConfigurationError(ActionableError):
    """Invalid patterns, arguments or config file. Raised before any registry call."""

    category = ErrorCategory.CONFIGURATION

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> "ConfigurationError":
        hints = [f"Check '{field}' in the config file or on the command line"]
        if "pattern" in field:
            hints.append("Patterns are Python regular expressions searched anywhere in the name")
        elif field in ("days", "months", "years", "latest"):
            hints.append("Ages and the latest count must be non-negative integers")
        hints.append("See config-example.yaml for every key")
        return cls(f"Invalid value for '{field}': {reason}", hints, {"field": field, "value": value})


def _cause(error: Exception) -> Dict[str, str]:
    return {"cause": f"{type(error).__name__}: {error}"}


class ConnectivityError(ActionableError):
    """The registry cannot be reached, or rejects our credentials."""

    category = ErrorCategory.CONNECTION

    @classmethod
    def unreachable(cls, registry_url: str, error: Exception) -> "ConnectivityError":
        cause = str(error).lower()
        hints = [
            f"Check the registry URL: {registry_url}",
            "Check that the registry is running and reachable from this host",
        ]
        if "certificate" in cause or "ssl" in cause:
            hints.insert(0, "The TLS certificate could not be verified; use --insecure for self-signed registries")
        if "timed out" in cause or "timeout" in cause:
            hints.append("Raise analysis.timeout if the registry is slow to answer")
        if "name resolution" in cause or "name or service not known" in cause:
            hints.append("Check DNS for the registry host name")
        return cls(f"Could not reach the registry at {registry_url}", hints, _cause(error))

    @classmethod
    def rejected(cls, registry_url: str, error: Exception) -> "ConnectivityError":
        hints = [
            "Check --user/--password, REGISTRY_USERNAME/REGISTRY_PASSWORD or registry.auth_secret",
            "The account needs catalog read and manifest delete permission",
        ]
        return cls(f"The registry at {registry_url} rejected our credentials", hints, _cause(error),
                   category=ErrorCategory.AUTHENTICATION)


class FetchError(Exception):
    """A descriptor, manifest or config blob could not be resolved for a tag."""

    def __init__(self, repository: str, tag: Optional[str], message: str, status_code: Optional[int] = None):
        self.repository = repository
        self.tag = tag
        self.status_code = status_code
        target = f"{repository}:{tag}" if tag else repository
        super().__init__(f"{target}: {message}")


class DeleteError(Exception):
    """The registry rejected, or did not confirm, a manifest deletion."""

    def __init__(self, repository: str, digest: str, message: str, status_code: Optional[int] = None):
        self.repository = repository
        self.digest = digest
        self.status_code = status_code
        self.reason = message
        super().__init__(f"{repository}@{digest}: {message}")
