"""hostgate proxy runtime: the registry query adapter and the reference gateway."""

from hostgate.proxy.adapter import ProxyAdapter
from hostgate.proxy.gateway import Gateway, forwarded_headers, parse_bind, resolve_static_path

__all__ = [
    "Gateway",
    "ProxyAdapter",
    "forwarded_headers",
    "parse_bind",
    "resolve_static_path",
]
