"""hostgate - registry-driven multi-domain TLS routing.

A single reverse proxy selects the TLS certificate per connection (SNI) and the
backend per request (Host) by querying a SQLite registry of domains, so domains
can be added or removed without reloading the proxy.
"""

__version__ = "0.3.0"
