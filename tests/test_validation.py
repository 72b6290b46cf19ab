"""Tests for hostname helpers and input validation."""

from __future__ import annotations

import pytest

from hostgate.domains.models import DomainType
from hostgate.domains.validation import (
    is_valid_domain,
    validate_domain,
    validate_email,
    validate_port,
    validate_target,
    validate_type,
)
from hostgate.domains.wildcards import (
    normalize_host,
    suffix,
    wildcard_for,
    wildcard_problem,
)
from hostgate.errors import ValidationError


class TestNormalizeHost:
    """Tests for Host/SNI normalization."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("Example.COM", "example.com"),
            ("app.example.com:8443", "app.example.com"),
            ("app.example.com.", "app.example.com"),
            ("  app.example.com  ", "app.example.com"),
            ("[::1]:443", "[::1]"),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_host(raw) == expected


class TestWildcards:
    """Tests for single-level wildcard helpers."""

    def test_suffix(self):
        assert suffix("a.b.example.com") == "b.example.com"
        assert suffix("localhost") is None
        assert suffix("trailing.") is None

    def test_wildcard_for(self):
        assert wildcard_for("app.example.com") == "*.example.com"
        assert wildcard_for("deep.app.example.com") == "*.app.example.com"
        assert wildcard_for("localhost") is None

    @pytest.mark.parametrize(
        "pattern",
        ["**.example.com", "*.*.example.com", "*.com", "*.example..com", "example.com"],
    )
    def test_invalid_patterns(self, pattern):
        assert wildcard_problem(pattern)

    def test_valid_pattern(self):
        assert wildcard_problem("*.example.com") is None


class TestDomainValidation:
    """Tests for domain name validation."""

    @pytest.mark.parametrize(
        "domain",
        ["example.com", "api.example.com", "my_app.example.io", "*.example.com", "a-b.c-d.org"],
    )
    def test_valid(self, domain):
        assert is_valid_domain(domain)

    @pytest.mark.parametrize(
        "domain",
        ["localhost", "https://example.com", "example", "ex ample.com", "example.c", "*.com"],
    )
    def test_invalid(self, domain):
        assert not is_valid_domain(domain)

    def test_validate_domain_lowercases(self):
        assert validate_domain("  API.Example.COM ") == "api.example.com"

    def test_validate_domain_empty(self):
        with pytest.raises(ValidationError, match="empty"):
            validate_domain("")

    def test_validate_domain_rejects_scheme(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_domain("https://example.com")
        assert exc_info.value.details["domain"] == "https://example.com"


class TestPortValidation:
    """Tests for port parsing."""

    @pytest.mark.parametrize(("value", "expected"), [("1", 1), (" 3000 ", 3000), (65535, 65535)])
    def test_valid(self, value, expected):
        assert validate_port(value) == expected

    @pytest.mark.parametrize("value", ["0", "65536", "-1", "http", "", "80.5"])
    def test_invalid(self, value):
        with pytest.raises(ValidationError, match="between 1 and 65535"):
            validate_port(value)


class TestEmailValidation:
    def test_valid(self):
        assert validate_email(" ops@example.com ") == "ops@example.com"

    @pytest.mark.parametrize("value", ["", "ops", "ops@", "ops@example", "a b@example.com"])
    def test_invalid(self, value):
        with pytest.raises(ValidationError):
            validate_email(value)


class TestTypeAndTarget:
    """Tests for type/target validation."""

    def test_validate_type(self):
        assert validate_type("STATIC") is DomainType.STATIC
        assert validate_type(DomainType.SERVER) is DomainType.SERVER
        with pytest.raises(ValidationError, match="static, server"):
            validate_type("proxy")

    def test_server_target_is_port(self):
        assert validate_target("server", 8080) == "8080"
        with pytest.raises(ValidationError):
            validate_target("server", "/var/www")

    def test_static_target_is_absolute_path(self):
        assert validate_target("static", "/var/www/site") == "/var/www/site"
        with pytest.raises(ValidationError, match="absolute"):
            validate_target("static", "var/www")
        with pytest.raises(ValidationError, match="empty"):
            validate_target("static", "  ")
