"""Hostname normalization and wildcard keys.

A wildcard record ``*.example.com`` covers exactly one extra label:
``api.example.com`` resolves through it, ``deep.api.example.com`` and
``example.com`` do not.

Resolution never scans the registry for patterns. The single candidate
key for a hostname is derived with wildcard_for() and looked up directly.
"""

from __future__ import annotations

WILDCARD_PREFIX = "*."


def normalize_host(host: str) -> str:
    """Normalize a Host header or SNI value for lookup.

    Lower-cases, strips surrounding whitespace, a trailing dot and any
    ``:port`` suffix. Bracketed IPv6 literals keep their brackets.

    Examples:
        >>> normalize_host("API.Example.COM.")
        'api.example.com'
        >>> normalize_host("app.example.com:8443")
        'app.example.com'
    """
    host = host.strip().lower()
    if host.startswith("["):
        end = host.find("]")
        if end != -1:
            return host[: end + 1]
        return host
    if host.count(":") == 1:
        host = host.split(":", 1)[0]
    return host.rstrip(".")


def is_wildcard(name: str) -> bool:
    return name.startswith(WILDCARD_PREFIX)


def wildcard_base(name: str) -> str:
    """``*.example.com`` -> ``example.com``.

    Raises:
        ValueError: ``name`` has no ``*.`` prefix.
    """
    if not is_wildcard(name):
        raise ValueError(f"{name} is not a wildcard name")
    return name[len(WILDCARD_PREFIX) :]


def suffix(host: str) -> str | None:
    """Return the hostname with its leftmost label removed.

    Single-label hostnames have no suffix.

    Examples:
        >>> suffix("api.example.com")
        'example.com'
        >>> suffix("localhost") is None
        True
    """
    _, dot, rest = host.partition(".")
    if not dot or not rest:
        return None
    return rest


def wildcard_for(host: str) -> str | None:
    """Return the wildcard key that would cover ``host``, if any.

    Examples:
        >>> wildcard_for("app.example.com")
        '*.example.com'
        >>> wildcard_for("example") is None
        True
    """
    rest = suffix(host)
    if rest is None:
        return None
    return WILDCARD_PREFIX + rest


def wildcard_problem(name: str) -> str | None:
    """Describe what is wrong with a wildcard name, or None if it is usable.

    Only a single leading ``*`` label is allowed and the rest must still be
    a dotted name, so ``*.com`` is refused.
    """
    if not is_wildcard(name):
        return "missing the *. prefix"
    base = wildcard_base(name)
    if "*" in base:
        return "* may only appear as the first label"
    if "." not in base:
        return "a wildcard needs at least two labels after *."
    if not all(base.split(".")):
        return "empty label"
    return None
