"""Input validation for registry mutations.

The checks are intentionally shallow: hostnames are matched against a
label-shape pattern, not full RFC 1035 rules. Every validator returns the
normalized value or raises ValidationError.
"""

from __future__ import annotations

import re
from pathlib import Path

from hostgate.domains.models import DomainType
from hostgate.domains.wildcards import is_wildcard, wildcard_base, wildcard_problem
from hostgate.errors import ValidationError

DOMAIN_PATTERN = re.compile(r"^(?!://)([a-zA-Z0-9_-]{1,63}\.)+[a-zA-Z]{2,6}$")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

MIN_PORT = 1
MAX_PORT = 65535


def is_valid_domain(value: str) -> bool:
    """Check a hostname or ``*.``-prefixed wildcard against the label pattern.

    Examples:
        >>> is_valid_domain("example.com")
        True
        >>> is_valid_domain("*.example.com")
        True
        >>> is_valid_domain("https://example.com")
        False
    """
    if is_wildcard(value):
        if wildcard_problem(value) is not None:
            return False
        return bool(DOMAIN_PATTERN.match(wildcard_base(value)))
    return bool(DOMAIN_PATTERN.match(value))


def validate_domain(value: str) -> str:
    """Return the lower-cased domain or raise ValidationError."""
    domain = (value or "").strip().lower()
    if not domain:
        raise ValidationError("Domain cannot be empty.", {"domain": value})
    if not is_valid_domain(domain):
        raise ValidationError(
            f"Invalid domain format: {value}. Expected something like example.com",
            {"domain": value},
        )
    return domain


def validate_port(value: str | int) -> int:
    """Return the port as an int in [1, 65535] or raise ValidationError."""
    try:
        port = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(
            f"Invalid port: {value}. Please enter a number between {MIN_PORT} and {MAX_PORT}.",
            {"port": value},
        ) from None
    if not MIN_PORT <= port <= MAX_PORT:
        raise ValidationError(
            f"Invalid port: {value}. Please enter a number between {MIN_PORT} and {MAX_PORT}.",
            {"port": value},
        )
    return port


def validate_email(value: str) -> str:
    email = (value or "").strip()
    if not EMAIL_PATTERN.match(email):
        raise ValidationError(f"Invalid email address: {value}", {"email": value})
    return email


def validate_type(value: str | DomainType) -> DomainType:
    if isinstance(value, DomainType):
        return value
    try:
        return DomainType(str(value).strip().lower())
    except ValueError:
        choices = ", ".join(t.value for t in DomainType)
        raise ValidationError(
            f"Invalid domain type: {value}. Expected one of: {choices}", {"type": value}
        ) from None


def validate_target(domain_type: str | DomainType, target: str | int) -> str:
    """Validate a target against the domain type.

    ``server`` targets are local ports; ``static`` targets are absolute
    filesystem paths. The directory does not have to exist yet, deployments
    often create it after registration.

    Returns:
        The target in its stored string form.
    """
    domain_type = validate_type(domain_type)
    if domain_type is DomainType.SERVER:
        return str(validate_port(target))

    path = str(target or "").strip()
    if not path:
        raise ValidationError("Static target path cannot be empty.", {"target": target})
    if not Path(path).is_absolute():
        raise ValidationError(
            f"Static target must be an absolute path: {path}", {"target": target}
        )
    return path
