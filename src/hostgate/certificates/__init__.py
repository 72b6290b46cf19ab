"""hostgate certificate lifecycle.

Features:
- Default self-signed listener certificate, generated on first start
- ACME DNS-01 issuance with operator-published TXT records
- Reuse of a parent's wildcard certificate without contacting the CA
- Renewal, live TLS verification and on-disk status derivation

Usage:
    from hostgate.certificates import CertificateManager, ShellToolRunner

    manager = CertificateManager(store, ShellToolRunner())
    await manager.ensure_self_signed(confirm)
    status = await manager.obtain_certificate("example.com", confirm)
"""

from hostgate.certificates.certinfo import (
    CertificateInfo,
    TLSCheckResult,
    check_tls,
    load_certificate_file,
    parse_certificate,
)
from hostgate.certificates.lifecycle import (
    CertificateManager,
    CertificateState,
    CertificateStatus,
    RenewalResult,
)
from hostgate.certificates.tools import (
    AcmeSession,
    CertbotSession,
    CertificateChallenge,
    ShellToolRunner,
    ToolRunner,
    parse_dns_challenges,
)

__all__ = [
    "AcmeSession",
    "CertbotSession",
    "CertificateChallenge",
    "CertificateInfo",
    "CertificateManager",
    "CertificateState",
    "CertificateStatus",
    "RenewalResult",
    "ShellToolRunner",
    "TLSCheckResult",
    "ToolRunner",
    "check_tls",
    "load_certificate_file",
    "parse_certificate",
    "parse_dns_challenges",
]
