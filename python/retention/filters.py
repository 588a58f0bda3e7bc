"""
Name filters for repositories and tags.

Patterns are regular expressions searched anywhere in the name, so ``app``
matches ``team/app-server``; anchor with ``^``/``$`` for exact matches.
"""

import re
from typing import Optional, Pattern

from retention.error_utils import ConfigurationError


def compile_pattern(field: str, pattern: Optional[str], allow_empty: bool = False) -> Optional[Pattern]:
    """Compile a user supplied pattern.

    Args:
        field: Name of the option, used in the error message
        pattern: The regular expression text
        allow_empty: If True, an empty or missing pattern disables the filter (returns None)

    Raises:
        ConfigurationError: If the pattern does not compile
    """
    if pattern is None or pattern == "":
        if allow_empty:
            return None
        pattern = ".*"
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ConfigurationError.invalid_value(field, pattern, f"invalid regular expression: {e}")


def repository_matches(name: str, pattern: Pattern) -> bool:
    return pattern.search(name) is not None


def tag_matches(tag: str, include: Pattern, exclude: Optional[Pattern] = None) -> bool:
    """A tag participates iff it matches the include pattern and not the exclude pattern."""
    if include.search(tag) is None:
        return False
    if exclude is not None and exclude.search(tag) is not None:
        return False
    return True
