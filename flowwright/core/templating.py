"""Helpers for ``${name}`` variable references inside string payload fields."""

import re
from typing import Callable, Iterator, List, Optional, Tuple, Union

VARIABLE_PATTERN = re.compile(r"\$\{([^}]+)\}")


def find_references(text: str) -> List[str]:
    """Return the variable names referenced by ``text`` in order of appearance."""
    if not isinstance(text, str):
        return []
    return [m.group(1).strip() for m in VARIABLE_PATTERN.finditer(text)]


def split_template(text: str) -> Iterator[Tuple[bool, str]]:
    """
    Split ``text`` into literal and reference parts.

    Yields ``(is_reference, value)`` tuples; for references ``value`` is the
    variable name, for literals it is the raw text between references.
    """
    pos = 0
    for match in VARIABLE_PATTERN.finditer(text):
        if match.start() > pos:
            yield False, text[pos:match.start()]
        yield True, match.group(1).strip()
        pos = match.end()
    if pos < len(text):
        yield False, text[pos:]


def substitute(text: str, lookup: Callable[[str], Optional[Union[str, int, float]]]) -> str:
    """
    Replace every ``${name}`` whose lookup is not None with ``str(value)``.

    Unknown names are left untouched so that the literal text survives.
    """
    if not isinstance(text, str) or "${" not in text:
        return text

    def _replace(match: "re.Match[str]") -> str:
        value = lookup(match.group(1).strip())
        if value is None:
            return match.group(0)
        return str(value)

    return VARIABLE_PATTERN.sub(_replace, text)
