"""Process-wide wiring of settings to components.

A HostgateContext is built once per process (CLI invocation or gateway)
from HostgateSettings and passed to whatever needs the registry, the
certificate manager or the proxy adapter.
"""

from __future__ import annotations

from dataclasses import dataclass

from hostgate.certificates.lifecycle import CertificateManager
from hostgate.certificates.tools import ShellToolRunner, ToolRunner
from hostgate.core.config import HostgateSettings
from hostgate.domains.manager import DomainManager
from hostgate.domains.resolver import DomainResolver
from hostgate.domains.storage import RegistryStore
from hostgate.proxy.adapter import ProxyAdapter
from hostgate.proxy.gateway import Gateway


@dataclass
class HostgateContext:
    """Components sharing one registry store."""

    settings: HostgateSettings
    store: RegistryStore
    resolver: DomainResolver
    domains: DomainManager
    certificates: CertificateManager
    adapter: ProxyAdapter

    @classmethod
    def from_settings(
        cls,
        settings: HostgateSettings,
        runner: ToolRunner | None = None,
        initialize: bool = True,
    ) -> HostgateContext:
        """Build every component from ``settings``.

        Args:
            settings: Loaded configuration.
            runner: Tool runner for certificate work, ShellToolRunner by default.
            initialize: Create the registry table if it does not exist.
        """
        store = RegistryStore(settings.database_path, timeout=settings.sqlite_timeout)
        if initialize:
            store.initialize()

        resolver = DomainResolver(
            store,
            upstream_host=settings.upstream_host,
            index_document=settings.index_document,
        )
        runner = runner or ShellToolRunner(
            certbot_binary=settings.certbot_binary,
            openssl_binary=settings.openssl_binary,
            nameservers=settings.dns_nameservers,
            timeout=settings.tool_timeout,
        )
        certificates = CertificateManager(
            store,
            runner,
            acme_root=settings.acme_root,
            self_signed_cert_path=settings.self_signed_cert_path,
            self_signed_key_path=settings.self_signed_key_path,
            self_signed_common_name=settings.self_signed_common_name,
            self_signed_days=settings.self_signed_days,
            self_signed_key_bits=settings.self_signed_key_bits,
            acme_log_path=settings.acme_log_path,
            propagation_attempts=settings.propagation_attempts,
            propagation_interval=settings.propagation_interval,
            propagation_timeout=settings.propagation_timeout,
            renewal_window_days=settings.renewal_window_days,
        )
        return cls(
            settings=settings,
            store=store,
            resolver=resolver,
            domains=DomainManager(store),
            certificates=certificates,
            adapter=ProxyAdapter(resolver),
        )

    def create_gateway(self) -> Gateway:
        """Build the gateway with a separate short-timeout store for handshakes."""
        handshake_store = RegistryStore(
            self.settings.database_path, timeout=self.settings.handshake_lookup_timeout
        )
        handshake_resolver = DomainResolver(
            handshake_store,
            upstream_host=self.settings.upstream_host,
            index_document=self.settings.index_document,
        )
        return Gateway(
            self.adapter,
            self.certificates.default_certificate,
            https_bind=self.settings.https_bind,
            http_bind=self.settings.http_bind,
            proxy_timeout=self.settings.proxy_timeout,
            handshake_adapter=ProxyAdapter(handshake_resolver),
        )
