"""Run-scoped variable storage."""

import logging
from typing import Any, Dict, Iterator, Optional

from flowwright.core.templating import substitute

logger = logging.getLogger(__name__)


class VariableStore:
    """
    Name -> value mapping owned by one run.

    Values written by get-value steps are visible to every later step through
    ``${name}`` references; nothing survives the run.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._values: Dict[str, Any] = dict(initial or {})

    def set(self, name: str, value: Any) -> None:
        logger.debug("Variable %s = %r", name, value)
        self._values[name] = value

    def get(self, name: str, default: Any = None) -> Any:
        return self._values.get(name, default)

    def remove(self, name: str) -> None:
        self._values.pop(name, None)

    def interpolate(self, text: Any) -> Any:
        """Substitute ``${name}`` references in strings; other values pass through."""
        if not isinstance(text, str):
            return text
        return substitute(text, self._lookup)

    def _lookup(self, name: str) -> Optional[str]:
        if name not in self._values:
            return None
        value = self._values[name]
        return "" if value is None else value

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._values)

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self):
        return f"<VariableStore {sorted(self._values)}>"
