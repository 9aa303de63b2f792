"""UI test identifiers."""

from __future__ import annotations

from typing import Any


def accessibility_id(owner: Any, identifier: str) -> str:
    """Build a stable accessibility identifier for a UI element.

    Prefixes ``identifier`` with the owner's type name so UI tests can
    locate elements without colliding across views.

    Example:
        >>> class LoginView: ...
        >>> accessibility_id(LoginView(), "submit")
        'LoginView.submit'
    """
    name = owner.__name__ if isinstance(owner, type) else type(owner).__name__
    return f"{name}.{identifier}"
