"""Hostgate CLI - manage the domain registry, certificates and the gateway."""

from __future__ import annotations

import asyncio
import json
import shlex
import subprocess
import sys
from collections.abc import Callable, Coroutine
from typing import Any, TypeVar

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from hostgate import __version__
from hostgate.core.config import HostgateSettings, load_settings
from hostgate.core.context import HostgateContext
from hostgate.core.logging import configure_logging
from hostgate.domains.models import (
    Confirm,
    ConfirmationRequest,
    DomainRecord,
    ProxyRoute,
    StaticRoute,
)
from hostgate.errors import (
    HostgateError,
    NotConfigured,
    PermissionDenied,
    ToolExecutionError,
)

console = Console()

T = TypeVar("T")

BANNER = """
  _               _               _
 | |__   ___  ___| |_ __ _  __ _| |_ ___
 | '_ \\ / _ \\/ __| __/ _` |/ _` | __/ _ \\
 | | | | (_) \\__ \\ || (_| | (_| | ||  __/
 |_| |_|\\___/|___/\\__\\__, |\\__,_|\\__\\___|
                     |___/
"""

STATE_STYLES = {
    "issued": "green",
    "self_signed": "cyan",
    "renewal_due": "yellow",
    "pending_issuance": "blue",
    "failed": "red",
    "unknown": "magenta",
    "none": "dim",
}


def _settings(ctx: click.Context) -> HostgateSettings:
    obj = ctx.ensure_object(dict)
    if "settings" not in obj:
        try:
            obj["settings"] = load_settings(obj.get("config_file"), **obj.get("overrides", {}))
        except (FileNotFoundError, ValueError) as e:
            console.print(f"[red]Failed to load config: {e}[/red]")
            sys.exit(1)
    return obj["settings"]


def _context(ctx: click.Context) -> HostgateContext:
    obj = ctx.ensure_object(dict)
    if "context" not in obj:
        settings = _settings(ctx)
        configure_logging(settings.log_level)
        obj["context"] = _guard(lambda: HostgateContext.from_settings(settings))
    return obj["context"]


def _confirm(assume_yes: frozenset[str] = frozenset()) -> Confirm:
    """Answer ConfirmationRequests on the terminal.

    Kinds listed in ``assume_yes`` are accepted without asking.
    """

    async def confirm(request: ConfirmationRequest) -> bool:
        if request.kind in assume_yes:
            console.print(f"[dim]{request.message} (yes)[/dim]")
            return True
        if request.kind == "publish-challenge":
            console.print(
                Panel(request.message, title="DNS challenge", border_style="yellow")
            )
            return click.confirm("Continue once the record is published", default=request.default)
        return click.confirm(request.message, default=request.default)

    return confirm


def _render_error(e: HostgateError) -> None:
    if isinstance(e, ToolExecutionError):
        console.print(f"[red]Error:[/red] {e.message}")
        console.print(
            Panel(
                e.output.strip() or "(no output)",
                title=f"$ {e.command}",
                border_style="red",
            )
        )
        return
    console.print(f"[red]Error:[/red] {e.message}")


def _handle_permission(e: PermissionDenied) -> None:
    """Offer elevation or manual steps for a denied operation.

    Returns only when an access fix ran and the operation should be retried.
    """
    console.print(f"[red]Error:[/red] {e.message}")
    choices = ["sudo", "manual", "cancel"] if e.command else ["manual", "cancel"]
    choice = click.prompt(
        "How do you want to continue?",
        type=click.Choice(choices),
        default="manual",
    )
    if choice == "sudo":
        console.print(f"[dim]$ {e.command}[/dim]")
        result = subprocess.run(shlex.split(e.command), check=False)
        if result.returncode != 0:
            console.print(f"[red]Command exited with status {result.returncode}[/red]")
            sys.exit(result.returncode)
        if e.retry:
            console.print("[dim]Access fixed, retrying.[/dim]")
            return
        sys.exit(0)
    if choice == "manual":
        console.print(Panel(e.instructions, title="Manual steps", border_style="yellow"))
    sys.exit(1)


def _guard(call: Callable[[], T]) -> T:
    try:
        return call()
    except PermissionDenied as e:
        _handle_permission(e)
    except HostgateError as e:
        _render_error(e)
        sys.exit(1)

    try:
        return call()
    except HostgateError as e:
        _render_error(e)
        sys.exit(1)


def _run(make: Callable[[], Coroutine[Any, Any, T]]) -> T:
    """Run the coroutine built by ``make``, building it again on a retry."""
    return _guard(lambda: asyncio.run(make()))


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _domain_table(title: str, records: list[tuple[DomainRecord, str]]) -> Table:
    table = Table(title=title)
    table.add_column("Domain", style="cyan")
    table.add_column("Type")
    table.add_column("Target")
    table.add_column("SSL")
    table.add_column("Owner", style="dim")
    for record, label in records:
        ssl_text = "[green]yes[/green]" if record.has_certificate else "[dim]no[/dim]"
        table.add_row(
            label,
            record.type.value if record.type else "[red]?[/red]",
            record.target or "-",
            ssl_text,
            record.owner or "-",
        )
    return table


@click.group()
@click.option(
    "--config",
    "-c",
    "config_file",
    type=click.Path(exists=True),
    help="Path to a YAML or TOML config file",
)
@click.option("--database", type=click.Path(dir_okay=False), help="Registry database path")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default=None,
    help="Logging level (default: from config, else info)",
)
@click.version_option(version=__version__, prog_name="hostgate")
@click.pass_context
def main(
    ctx: click.Context,
    config_file: str | None,
    database: str | None,
    log_level: str | None,
):
    """Hostgate - one TLS front door for many local sites.

    Examples:

        hostgate domain add example.com -e ops@example.com -o ops -t server --target 3000

        hostgate subdomain add example.com api --type static --target /var/www/api

        hostgate ssl issue example.com

        hostgate serve

    Use 'hostgate COMMAND --help' for more info on specific commands.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file
    ctx.obj["overrides"] = {"database_path": database, "log_level": log_level}


# Domains


@main.group()
def domain():
    """Manage root domains.

    Examples:

        hostgate domain add example.com -e ops@example.com -o ops -t server --target 3000

        hostgate domain list

        hostgate domain edit example.com --type static --target /var/www/site

        hostgate domain remove example.com
    """
    pass


@domain.command("add")
@click.argument("name")
@click.option("--email", "-e", required=True, help="Contact email for certificates")
@click.option("--owner", "-o", required=True, help="Owner label")
@click.option(
    "--type",
    "-t",
    "domain_type",
    type=click.Choice(["server", "static"]),
    required=True,
    help="Serve a local port (server) or a directory (static)",
)
@click.option("--target", required=True, help="Port for server, absolute path for static")
@click.pass_context
def domain_add(
    ctx: click.Context, name: str, email: str, owner: str, domain_type: str, target: str
):
    """Register a new root domain."""
    app = _context(ctx)
    record = _run(lambda: app.domains.register_domain(name, email, owner, domain_type, target))
    console.print(f"[green]Domain {record.domain} added successfully.[/green]")


@domain.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def domain_list(ctx: click.Context, as_json: bool):
    """List registered domains with their subdomains."""
    app = _context(ctx)
    tree = _run(app.domains.domain_tree)

    if as_json:
        _echo_json([node.to_dict() for node in tree])
        return

    if not tree:
        console.print("[yellow]No domains registered.[/yellow]")
        return

    rows: list[tuple[DomainRecord, str]] = []
    for node in tree:
        rows.append((node.record, node.record.domain))
        for i, child in enumerate(node.children):
            branch = "└─" if i == len(node.children) - 1 else "├─"
            rows.append((child, f"  {branch} {child.domain}"))
    console.print(_domain_table("Domains", rows))


@domain.command("show")
@click.argument("name")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def domain_show(ctx: click.Context, name: str, as_json: bool):
    """Show one domain, its certificate state and its subdomains."""
    app = _context(ctx)

    async def gather():
        record = await app.domains.get_domain(name)
        children = await app.domains.list_subdomains(record.domain) if record.is_root else []
        status = await app.certificates.certificate_status(record.domain)
        return record, children, status

    record, children, status = _run(gather)

    if as_json:
        _echo_json(
            {
                **record.to_dict(),
                "certificate": status.to_dict(),
                "subdomains": [child.domain for child in children],
            }
        )
        return

    style = STATE_STYLES.get(status.state.value, "white")
    lines = [
        f"[bold]Type:[/bold]        {record.type.value if record.type else 'unknown'}",
        f"[bold]Target:[/bold]      {record.target or '-'}",
        f"[bold]Email:[/bold]       {record.email or '-'}",
        f"[bold]Owner:[/bold]       {record.owner or '-'}",
        f"[bold]Parent:[/bold]      {record.parent or '-'}",
        f"[bold]Project:[/bold]     {record.project_path or '-'}",
        f"[bold]Certificate:[/bold] [{style}]{status.state.value}[/{style}]"
        + (f" ({status.detail})" if status.detail else ""),
    ]
    if record.has_certificate:
        lines.append(f"[bold]Cert path:[/bold]   {record.ssl_certificate_path}")
        lines.append(f"[bold]Key path:[/bold]    {record.ssl_certificate_key_path}")
    if children:
        lines.append(f"[bold]Subdomains:[/bold]  {', '.join(c.domain for c in children)}")

    console.print(Panel("\n".join(lines), title=record.domain, border_style="cyan"))


@domain.command("edit")
@click.argument("name")
@click.option(
    "--type",
    "-t",
    "domain_type",
    type=click.Choice(["server", "static"]),
    default=None,
    help="New type",
)
@click.option("--target", default=None, help="New port or directory")
@click.pass_context
def domain_edit(ctx: click.Context, name: str, domain_type: str | None, target: str | None):
    """Change how a domain is served."""
    if domain_type is None and target is None:
        console.print("[yellow]Nothing to change. Pass --type and/or --target.[/yellow]")
        return
    app = _context(ctx)
    record = _run(lambda: app.domains.edit_domain_details(name, domain_type, target))
    console.print(
        f"[green]Domain {record.domain} updated:[/green] {record.type.value} -> {record.target}"
    )


@domain.command("remove")
@click.argument("name")
@click.pass_context
def domain_remove(ctx: click.Context, name: str):
    """Delete a domain and all of its subdomains."""
    app = _context(ctx)
    plan = _run(lambda: app.domains.delete_domain(name, _confirm()))
    if plan is None:
        console.print("[yellow]Deletion cancelled.[/yellow]")
        return
    console.print(f"[green]Domain {plan.domain} deleted successfully.[/green]")
    if plan.cascades:
        for removed in plan.removed[1:]:
            console.print(f"  [dim]removed {removed}[/dim]")


@domain.command("link")
@click.argument("name")
@click.argument("path", required=False, type=click.Path(file_okay=False))
@click.option("--unlink", is_flag=True, help="Remove the project link")
@click.pass_context
def domain_link(ctx: click.Context, name: str, path: str | None, unlink: bool):
    """Link a local project directory to a domain.

    Examples:

        hostgate domain link example.com ~/code/site

        hostgate domain link example.com --unlink
    """
    if not unlink and not path:
        console.print("[red]Error:[/red] Pass a project PATH or --unlink.")
        sys.exit(1)
    app = _context(ctx)
    record = _run(lambda: app.domains.link_project(name, None if unlink else path))
    if record.project_path:
        console.print(f"[green]Linked {record.domain} to {record.project_path}[/green]")
    else:
        console.print(f"[green]Unlinked project from {record.domain}[/green]")


# Subdomains


@main.group()
def subdomain():
    """Manage subdomains of a registered domain.

    Examples:

        hostgate subdomain add example.com api --type server --target 4000

        hostgate subdomain list example.com

        hostgate subdomain remove example.com api
    """
    pass


@subdomain.command("add")
@click.argument("parent")
@click.argument("name")
@click.option(
    "--type",
    "-t",
    "domain_type",
    type=click.Choice(["server", "static"]),
    required=True,
    help="Serve a local port (server) or a directory (static)",
)
@click.option("--target", required=True, help="Port for server, absolute path for static")
@click.option("--owner", "-o", default=None, help="Owner label (default: parent's)")
@click.option("--email", "-e", default=None, help="Contact email (default: parent's)")
@click.pass_context
def subdomain_add(
    ctx: click.Context,
    parent: str,
    name: str,
    domain_type: str,
    target: str,
    owner: str | None,
    email: str | None,
):
    """Add NAME (a label or full hostname) under PARENT."""
    app = _context(ctx)
    record = _run(
        lambda: app.domains.add_subdomain(
            parent, name, domain_type, target, owner=owner, email=email
        )
    )
    console.print(f"[green]Subdomain {record.domain} added successfully.[/green]")
    if record.has_certificate:
        console.print(f"  [dim]inherits certificate {record.ssl_certificate_path}[/dim]")


@subdomain.command("list")
@click.argument("parent")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def subdomain_list(ctx: click.Context, parent: str, as_json: bool):
    """List the subdomains of PARENT."""
    app = _context(ctx)
    children = _run(lambda: app.domains.list_subdomains(parent))

    if as_json:
        _echo_json([child.to_dict() for child in children])
        return

    if not children:
        console.print(f"[yellow]No subdomains found for {parent}.[/yellow]")
        return
    console.print(_domain_table(f"Subdomains of {parent}", [(c, c.domain) for c in children]))


@subdomain.command("edit")
@click.argument("parent")
@click.argument("name")
@click.option(
    "--type",
    "-t",
    "domain_type",
    type=click.Choice(["server", "static"]),
    default=None,
    help="New type",
)
@click.option("--target", default=None, help="New port or directory")
@click.pass_context
def subdomain_edit(
    ctx: click.Context, parent: str, name: str, domain_type: str | None, target: str | None
):
    """Change how a subdomain is served."""
    if domain_type is None and target is None:
        console.print("[yellow]Nothing to change. Pass --type and/or --target.[/yellow]")
        return
    app = _context(ctx)
    record = _run(lambda: app.domains.edit_subdomain(parent, name, domain_type, target))
    console.print(
        f"[green]Subdomain {record.domain} updated:[/green] {record.type.value} -> {record.target}"
    )


@subdomain.command("remove")
@click.argument("parent")
@click.argument("name")
@click.pass_context
def subdomain_remove(ctx: click.Context, parent: str, name: str):
    """Delete one subdomain. The parent is kept."""
    app = _context(ctx)
    deleted = _run(lambda: app.domains.delete_subdomain(parent, name, _confirm()))
    if not deleted:
        console.print("[yellow]Deletion cancelled.[/yellow]")
        return
    console.print(f"[green]Subdomain {name} of {parent} deleted successfully.[/green]")


# Certificates


@main.group()
def ssl():
    """Issue, renew and inspect certificates.

    Examples:

        hostgate ssl bootstrap

        hostgate ssl issue example.com

        hostgate ssl renew --due

        hostgate ssl scan
    """
    pass


@ssl.command("bootstrap")
@click.option("--yes", "-y", is_flag=True, help="Generate the default pair without asking")
@click.pass_context
def ssl_bootstrap(ctx: click.Context, yes: bool):
    """Make sure the default self-signed certificate exists."""
    app = _context(ctx)
    assume = frozenset({"generate-self-signed"}) if yes else frozenset()
    paths = _run(lambda: app.certificates.ensure_self_signed(_confirm(assume)))
    console.print("[green]Default certificate ready.[/green]")
    console.print(f"  cert: {paths.cert_path}")
    console.print(f"  key:  {paths.key_path}")


@ssl.command("issue")
@click.argument("name")
@click.option("--email", "-e", default=None, help="Override the registered contact email")
@click.pass_context
def ssl_issue(ctx: click.Context, name: str, email: str | None):
    """Obtain a certificate for NAME with a DNS-01 challenge.

    You will be asked to publish one TXT record per challenge; hostgate
    waits until the record is visible before letting the ACME client
    continue.
    """
    app = _context(ctx)
    status = _run(lambda: app.certificates.obtain_certificate(name, _confirm(), email=email))
    if status is None:
        console.print("[yellow]Certificate issuance cancelled. Nothing was changed.[/yellow]")
        return
    style = STATE_STYLES.get(status.state.value, "white")
    console.print(
        Panel(
            f"[bold]State:[/bold] [{style}]{status.state.value}[/{style}]\n"
            f"[bold]Cert:[/bold]  {status.cert_path}\n"
            f"[bold]Key:[/bold]   {status.key_path}"
            + (f"\n[dim]{status.detail}[/dim]" if status.detail else ""),
            title=f"Certificate for {status.domain}",
            border_style="green",
        )
    )


@ssl.command("record")
@click.argument("name")
@click.pass_context
def ssl_record(ctx: click.Context, name: str):
    """Record a certificate for NAME that certbot issued outside hostgate.

    Run this after 'sudo certbot ...' so the registry points at the new files.
    """
    app = _context(ctx)
    status = _run(lambda: app.certificates.record_certificate(name))
    style = STATE_STYLES.get(status.state.value, "white")
    console.print(f"[green]Recorded {status.cert_path} for {status.domain}[/green]")
    console.print(f"  state: [{style}]{status.state.value}[/{style}]")


@ssl.command("renew")
@click.argument("name", required=False)
@click.option("--due", is_flag=True, help="Renew every certificate inside the renewal window")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def ssl_renew(ctx: click.Context, name: str | None, due: bool, as_json: bool):
    """Renew the certificate for NAME, or all due certificates with --due."""
    if bool(name) == due:
        console.print("[red]Error:[/red] Pass either a domain NAME or --due.")
        sys.exit(1)

    app = _context(ctx)
    if due:
        results = _run(app.certificates.renew_due)
    else:
        results = [_run(lambda: app.certificates.renew(name))]

    if as_json:
        _echo_json([result.to_dict() for result in results])
    elif not results:
        console.print("[green]No certificates are due for renewal.[/green]")
    else:
        for result in results:
            if result.ok:
                console.print(f"[green]Renewed {result.domain}[/green]")
            else:
                console.print(f"[red]Failed to renew {result.domain}:[/red] {result.error}")
                if result.output.strip():
                    console.print(Panel(result.output.strip(), border_style="red"))

    if any(not result.ok for result in results):
        sys.exit(1)


@ssl.command("verify")
@click.argument("name")
@click.option("--port", "-p", default=443, type=int, help="Port to connect to")
@click.option("--timeout", default=10.0, type=float, help="Handshake timeout in seconds")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def ssl_verify(ctx: click.Context, name: str, port: int, timeout: float, as_json: bool):
    """Connect to NAME and report the certificate it serves."""
    app = _context(ctx)
    result = _run(lambda: app.certificates.verify(name, port=port, timeout=timeout))

    if as_json:
        _echo_json(result.to_dict())
    elif result.ok and result.certificate:
        cert = result.certificate
        console.print(
            Panel(
                f"[bold]Subject:[/bold]  {cert.subject}\n"
                f"[bold]Issuer:[/bold]   {cert.issuer}\n"
                f"[bold]Expires:[/bold]  {cert.not_after:%Y-%m-%d %H:%M} UTC "
                f"({int(cert.days_remaining())} days)\n"
                f"[bold]Names:[/bold]    {', '.join(cert.dns_names) or '-'}\n"
                f"[bold]Protocol:[/bold] {result.details.get('protocol') or '-'}",
                title=f"[green]TLS OK[/green] {name}:{port}",
                border_style="green",
            )
        )
    else:
        console.print(f"[red]TLS check failed for {name}:{port}:[/red] {result.error}")

    if not result.ok:
        sys.exit(1)


@ssl.command("status")
@click.argument("name")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def ssl_status(ctx: click.Context, name: str, as_json: bool):
    """Show the certificate state of NAME."""
    app = _context(ctx)
    status = _run(lambda: app.certificates.certificate_status(name))
    if as_json:
        _echo_json(status.to_dict())
        return
    style = STATE_STYLES.get(status.state.value, "white")
    console.print(f"{status.domain}: [{style}]{status.state.value}[/{style}]")
    if status.detail:
        console.print(f"  [dim]{status.detail}[/dim]")


@ssl.command("scan")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def ssl_scan(ctx: click.Context, as_json: bool):
    """Show the certificate state of every registered domain."""
    app = _context(ctx)
    statuses = _run(app.certificates.scan_certificates)
    default = app.certificates.self_signed_status()

    if as_json:
        _echo_json({"default": default.to_dict(), "domains": [s.to_dict() for s in statuses]})
        return

    table = Table(title="Certificates")
    table.add_column("Domain", style="cyan")
    table.add_column("State")
    table.add_column("Expires")
    table.add_column("Detail", style="dim")
    for status in [default, *statuses]:
        style = STATE_STYLES.get(status.state.value, "white")
        table.add_row(
            status.domain,
            f"[{style}]{status.state.value}[/{style}]",
            f"{status.not_after:%Y-%m-%d}" if status.not_after else "-",
            status.detail or "",
        )
    console.print(table)


@ssl.command("logs")
@click.option("--lines", "-n", default=50, type=int, help="Number of lines to show")
@click.pass_context
def ssl_logs(ctx: click.Context, lines: int):
    """Show the tail of the ACME client log."""
    app = _context(ctx)
    output = _run(lambda: app.certificates.view_logs(lines))
    if not output:
        console.print(f"[yellow]No log entries at {app.settings.acme_log_path}[/yellow]")
        return
    for line in output:
        click.echo(line)


# Diagnostics and gateway


@main.command()
@click.argument("host")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def resolve(ctx: click.Context, host: str, as_json: bool):
    """Show how the gateway would route HOST and which certificate it would serve."""
    app = _context(ctx)

    def lookup():
        try:
            return app.resolver.resolve_route(host), None
        except NotConfigured as e:
            return None, e.message

    route, error = _guard(lookup)
    paths = _guard(lambda: app.resolver.resolve_certificate_paths(host))

    if as_json:
        _echo_json(
            {
                "host": host,
                "route": vars(route) if route else None,
                "error": error,
                "certificate": vars(paths) if paths else None,
            }
        )
    else:
        if isinstance(route, StaticRoute):
            console.print(f"[cyan]{host}[/cyan] -> static {route.root_path} (index {route.index})")
        elif isinstance(route, ProxyRoute):
            console.print(f"[cyan]{host}[/cyan] -> proxy http://{route.upstream}")
        else:
            console.print(f"[yellow]{error}[/yellow]")
        if paths:
            console.print(f"  certificate: {paths.cert_path}")
        else:
            default = app.certificates.default_certificate
            console.print(f"  certificate: [dim]{default.cert_path} (default)[/dim]")

    if route is None:
        sys.exit(1)


@main.command()
@click.option("--https-bind", default=None, help="TLS listener address (host:port)")
@click.option("--http-bind", default=None, help="Redirect listener address, '' to disable")
@click.option("--yes", "-y", is_flag=True, help="Generate the default certificate without asking")
@click.pass_context
def serve(ctx: click.Context, https_bind: str | None, http_bind: str | None, yes: bool):
    """Run the reference TLS gateway.

    Examples:

        hostgate serve

        hostgate serve --https-bind 127.0.0.1:8443 --http-bind ''
    """
    obj = ctx.ensure_object(dict)
    obj.setdefault("overrides", {}).update({"https_bind": https_bind, "http_bind": http_bind})
    app = _context(ctx)
    assume = frozenset({"generate-self-signed"}) if yes else frozenset()

    async def run_gateway() -> None:
        await app.certificates.ensure_self_signed(_confirm(assume))
        gateway = app.create_gateway()
        await gateway.start()
        console.print(
            Panel(
                f"[bold]HTTPS:[/bold] {app.settings.https_bind}\n"
                f"[bold]HTTP:[/bold]  {app.settings.http_bind or 'disabled'}\n"
                f"[bold]Registry:[/bold] {app.settings.database_path}",
                title="Hostgate gateway",
                border_style="cyan",
            )
        )
        console.print("Press Ctrl+C to stop", style="dim")
        try:
            await asyncio.Event().wait()
        finally:
            await gateway.stop()

    try:
        _run(run_gateway)
    except KeyboardInterrupt:
        console.print("\n[yellow]Gateway stopped.[/yellow]")
    except OSError as e:
        console.print(f"[red]Error:[/red] Failed to start listener: {e}")
        sys.exit(1)


# Configuration


@main.group()
def config():
    """Configuration management commands."""
    pass


@config.command("show")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.option(
    "--section",
    "-s",
    type=click.Choice(["registry", "certificates", "gateway", "logging"]),
    help="Show only a specific section",
)
@click.option("--env", "as_env", is_flag=True, help="Output as HOSTGATE_* environment variables")
@click.pass_context
def config_show(ctx: click.Context, as_json: bool, section: str | None, as_env: bool):
    """Show current configuration."""
    settings = _settings(ctx)

    if as_env:
        for key, value in settings.to_env_dict().items():
            click.echo(f"{key}={value}")
        return

    data = settings.to_display_dict()
    if section:
        data = {section: data[section]}

    if as_json:
        _echo_json(data)
        return

    for section_name, values in data.items():
        table = Table(title=section_name.title(), show_header=False)
        table.add_column("Setting", style="cyan")
        table.add_column("Value")
        for key, value in values.items():
            table.add_row(key, "-" if value is None else str(value))
        console.print(table)


@config.command("validate")
@click.argument("path", type=click.Path(exists=True))
def config_validate(path: str):
    """Validate a config file without applying it."""
    from pydantic import ValidationError as SettingsError

    try:
        settings = load_settings(path)
    except (FileNotFoundError, ValueError) as e:
        if isinstance(e, SettingsError):
            console.print(f"[red]Invalid configuration in {path}:[/red]")
            for err in e.errors():
                location = ".".join(str(part) for part in err["loc"])
                console.print(f"  [red]{location}[/red]: {err['msg']}")
        else:
            console.print(f"[red]Failed to load config: {e}[/red]")
        sys.exit(1)

    console.print(f"[green]{path} is valid.[/green]")
    console.print(f"  registry: {settings.database_path}", style="dim")


@main.command()
def version():
    """Show version information."""
    console.print(BANNER, style="cyan")
    console.print(f"Version: {__version__}")
    console.print(f"Python: {sys.version.split()[0]}")


if __name__ == "__main__":
    main()
