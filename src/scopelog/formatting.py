"""Message formatting for tracker output.

Turns the heterogeneous values handed to ``info``/``warn``/``error``/``add``
into one printable string. A value contributes text when it is
describable; a sequence of describable values is flattened one level.
Everything else is reported back as unsupported so the tracker can raise a
warning for it.

Describable values:
- ``str``, ``int``, ``float``, ``complex``, ``bool``, ``bytes`` and ``None``
- mappings (rendered with ``str()``)
- any object whose class overrides ``__str__`` (enums, paths,
  exceptions, decimals, datetimes, ...)

Example:
    formatter = MessageFormatter()
    result = formatter.format(["loaded", [1, 2], 3.5])
    result.text          # 'loaded 1 2 3.5 '
    result.unsupported   # ()
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence, Set
from dataclasses import dataclass
from typing import Any

#: Separator appended after every description unless the caller overrides it.
DEFAULT_SEPARATOR = " "

#: Types that are always describable, even though several of them inherit
#: ``object.__str__`` at the slot level.
_SCALAR_TYPES: tuple[type, ...] = (
    str,
    int,
    float,
    complex,
    bool,
    bytes,
    type(None),
)


@dataclass(frozen=True)
class FormattedMessage:
    """Result of formatting a sequence of values.

    Attributes:
        text: Concatenated descriptions, each followed by the separator.
            The trailing separator is kept.
        unsupported: Type names of values that contributed no text, in
            the order they were encountered.
    """

    text: str
    unsupported: tuple[str, ...] = ()


def is_describable(value: Any) -> bool:
    """Return True when ``value`` has a textual description of its own.

    Args:
        value: Any Python value.

    Returns:
        True for the scalar types, mappings and objects whose class
        overrides ``__str__``. False for plain objects (including
        dataclass instances without ``__str__``) and for sequences,
        which are handled one level up by ``MessageFormatter``.

    Example:
        >>> is_describable(42)
        True
        >>> is_describable(object())
        False
    """
    if isinstance(value, _SCALAR_TYPES) or isinstance(value, Mapping):
        return True
    if _is_collection(value):
        return False
    return type(value).__str__ is not object.__str__


def _is_collection(value: Any) -> bool:
    if isinstance(value, (str, bytes, bytearray, Mapping)):
        return False
    return isinstance(value, (Sequence, Set))


def _describe(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


class MessageFormatter:
    """Stateless formatter for tracker messages.

    The formatter never emits anything itself; unsupported values are
    returned to the caller in ``FormattedMessage.unsupported``.
    """

    def format(
        self,
        values: Iterable[Any],
        separator: str = DEFAULT_SEPARATOR,
    ) -> FormattedMessage:
        """Format ``values`` into a single line.

        Each describable value is appended followed by ``separator``.
        A sequence or set whose elements are all describable contributes
        each element's description followed by ``separator``. Any other
        value (including a sequence holding something undescribable)
        contributes nothing and its type name is recorded as unsupported.

        Args:
            values: Values in display order.
            separator: Text appended after each description.

        Returns:
            FormattedMessage with the concatenated text and the type
            names of unsupported values.

        Example:
            >>> MessageFormatter().format(["a", [1, 2]], separator=",").text
            'a,1,2,'
        """
        parts: list[str] = []
        unsupported: list[str] = []

        for value in values:
            if is_describable(value):
                parts.append(_describe(value) + separator)
            elif _is_collection(value) and all(is_describable(v) for v in value):
                parts.extend(_describe(v) + separator for v in value)
            else:
                unsupported.append(type(value).__name__)

        return FormattedMessage("".join(parts), tuple(unsupported))
