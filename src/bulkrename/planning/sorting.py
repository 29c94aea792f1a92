"""Batch ordering."""

from __future__ import annotations

import locale
import logging
import re
import unicodedata
from typing import Any, Callable, Iterable, List, TypeVar

from bulkrename.config.models import SortingMode

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_DIGITS = re.compile(r"(\d+)")


def use_system_collation() -> bool:
    """Collate with the user's locale instead of the interpreter's default "C".

    Returns:
        bool: False when the environment names a locale the system lacks.
    """
    try:
        locale.setlocale(locale.LC_COLLATE, "")
    except locale.Error as exc:
        LOGGER.debug("Falling back to the C collation: %s", exc)
        return False
    return True


def _fold(value: str) -> str:
    """Case-fold ``value`` and drop its combining accents."""
    decomposed = unicodedata.normalize("NFD", value.casefold())
    return "".join(char for char in decomposed if unicodedata.category(char) != "Mn")


def lexicographical_key(value: str) -> tuple[str, str, str]:
    """Collation key ignoring case and accents first, then the locale, then the raw text."""
    return _fold(value), locale.strxfrm(value.casefold()), value


def natural_key(value: str) -> tuple[list[Any], str, str]:
    """Collation key comparing embedded digit runs as numbers.

    ``re.split`` with a capturing group alternates text and digit chunks, so
    chunks at the same position always have the same type.
    """
    chunks = _DIGITS.split(_fold(value))
    key = [int(chunk) if index % 2 else locale.strxfrm(chunk) for index, chunk in enumerate(chunks)]
    return key, locale.strxfrm(value.casefold()), value


def sort_items(
    items: Iterable[T],
    mode: SortingMode,
    key: Callable[[T], str] = str,
) -> List[T]:
    """Return ``items`` ordered according to ``mode``.

    Args:
        items: Items to order.
        mode: ``disabled`` keeps arrival order.
        key: Extracts the string compared for each item.

    Returns:
        List[T]: Ordered items.
    """
    ordered = list(items)
    if mode == "lexicographical":
        ordered.sort(key=lambda item: lexicographical_key(key(item)))
    elif mode == "natural":
        ordered.sort(key=lambda item: natural_key(key(item)))
    return ordered


__all__ = ["lexicographical_key", "natural_key", "sort_items", "use_system_collation"]
