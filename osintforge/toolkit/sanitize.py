"""
Argument scrubbing for user-derived values.

Tools are always executed from argv lists, never through a shell, so these
helpers are a second line: they keep shell metacharacters out of anything a
container entrypoint script might re-interpret, and give audit logs a quoted,
copy-pasteable rendering of what actually ran.
"""

from __future__ import annotations

import re
import shlex
from typing import Iterable, List, Sequence

from osintforge.errors import ValidationError

SHELL_METACHARACTERS = frozenset(";&|`$(){}[]<>")

_METACHAR_RE = re.compile(r"[;&|`$(){}\[\]<>]")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")


def sanitize_argument(value: str) -> str:
    """Strip shell metacharacters and control characters from a single argument."""
    cleaned = _METACHAR_RE.sub("", str(value))
    return _CONTROL_RE.sub("", cleaned)


def sanitize_arguments(values: Iterable[str]) -> List[str]:
    return [sanitize_argument(v) for v in values]


def reject_metacharacters(values: Sequence[str], field: str = "argument") -> None:
    """Raise ValidationError if any value carries a shell metacharacter."""
    for value in values:
        found = sorted(set(value) & SHELL_METACHARACTERS)
        if found:
            raise ValidationError(
                f"Unsafe characters in {field}: {' '.join(found)}",
                errors=[{"field": field, "message": "contains shell metacharacters"}],
            )


def render_command(argv: Sequence[str]) -> str:
    """Quote each argument atomically for logs and audit records."""
    return " ".join(shlex.quote(str(arg)) for arg in argv)
