"""External tools behind certificate issuance.

The lifecycle manager only talks to a ToolRunner. ShellToolRunner drives
the real binaries:

    certbot certonly --manual --preferred-challenges dns   (DNS-01 issuance)
    certbot renew --cert-name <domain> --non-interactive    (renewal)
    openssl req -x509 -nodes -newkey rsa:2048 ...           (default pair)

and resolves challenge TXT records with aiodns. Tests swap in a fake
runner so no binary or network is needed.
"""

from __future__ import annotations

import asyncio
import re
import shlex
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import aiodns
import structlog

from hostgate.errors import PermissionDenied, ToolExecutionError

logger = structlog.get_logger()

ACME_CHALLENGE_PREFIX = "_acme-challenge."

# certbot prints, per identifier:
#   Please deploy a DNS TXT record under the name:
#
#   _acme-challenge.example.com.
#
#   with the following value:
#
#   gfj9Xq...Rg85nM
#
# Older releases put the name on the same line and omit the colon.
_CHALLENGE_RE = re.compile(
    r"TXT record under the name:?\s+(?P<name>_acme-challenge\.\S+?)\.?\s+"
    r"with the following value:\s+(?P<value>[A-Za-z0-9_-]+)",
    re.IGNORECASE,
)
_CONTINUE_PROMPT = "press enter to continue"

_PERMISSION_MARKERS = (
    "permission denied",
    "run as root",
    "must be run as root",
    "operation not permitted",
)


@dataclass(frozen=True)
class CertificateChallenge:
    """One DNS-01 TXT record requested during an issuance attempt."""

    domain: str
    record_name: str
    value: str

    def to_dict(self) -> dict[str, str]:
        return {"domain": self.domain, "record_name": self.record_name, "value": self.value}


def parse_dns_challenges(output: str) -> list[CertificateChallenge]:
    """Extract TXT record name/value pairs from certbot manual-mode output.

    Examples:
        >>> text = "Please deploy a DNS TXT record under the name:\\n\\n"
        >>> text += "_acme-challenge.example.com.\\n\\nwith the following value:\\n\\nabc123\\n"
        >>> parse_dns_challenges(text)[0].record_name
        '_acme-challenge.example.com'
    """
    challenges = []
    for match in _CHALLENGE_RE.finditer(output):
        name = match.group("name").rstrip(".").lower()
        domain = name[len(ACME_CHALLENGE_PREFIX) :]
        challenges.append(
            CertificateChallenge(domain=domain, record_name=name, value=match.group("value"))
        )
    return challenges


def _txt_value(record) -> str:
    # pycares 4 exposes `.text`, pycares 5 nests the bytes under `.data.data`.
    text = getattr(record, "text", None)
    if text is None:
        data = getattr(getattr(record, "data", None), "data", b"")
        text = data.decode(errors="replace") if isinstance(data, bytes) else str(data)
    return text.strip('"').strip("'")


def looks_like_permission_error(output: str) -> bool:
    lowered = output.lower()
    return any(marker in lowered for marker in _PERMISSION_MARKERS)


class AcmeSession(Protocol):
    """A running DNS-01 issuance that waits for the operator between steps."""

    async def next_challenge(self) -> CertificateChallenge | None:
        """Return the next requested TXT record, or None once the tool stops asking."""
        ...

    async def proceed(self) -> None:
        """Tell the tool the current record is published."""
        ...

    async def finish(self) -> str:
        """Wait for the tool to exit and return its output.

        Raises:
            ToolExecutionError: The tool exited non-zero.
        """
        ...

    async def abort(self) -> None:
        """Stop the tool without completing issuance."""
        ...


class ToolRunner(Protocol):
    """Capabilities the certificate lifecycle needs from the outside world."""

    async def issue_certificate(self, domain: str, email: str) -> AcmeSession: ...

    async def renew_certificate(self, domain: str) -> str: ...

    async def generate_self_signed(
        self,
        cert_path: Path,
        key_path: Path,
        common_name: str,
        days: int,
        key_bits: int,
    ) -> str: ...

    async def query_txt_record(self, name: str) -> list[str]: ...


class CertbotSession:
    """Interactive ``certbot --manual`` process.

    certbot blocks on "Press Enter to Continue" after printing each
    challenge; output is read in chunks because the prompt has no newline.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        command: str,
        read_timeout: float = 300.0,
    ) -> None:
        self.process = process
        self.command = command
        self.read_timeout = read_timeout
        self._output = ""
        self._consumed = 0
        self._pending: list[CertificateChallenge] = []

    async def _read_until_prompt(self) -> bool:
        """Read output until certbot prompts or exits. Returns True on a prompt."""
        assert self.process.stdout is not None
        while True:
            if _CONTINUE_PROMPT in self._output[self._consumed :].lower():
                return True
            chunk = await asyncio.wait_for(
                self.process.stdout.read(4096), timeout=self.read_timeout
            )
            if not chunk:
                return False
            self._output += chunk.decode(errors="replace")

    async def next_challenge(self) -> CertificateChallenge | None:
        if self._pending:
            return self._pending.pop(0)

        try:
            prompted = await self._read_until_prompt()
        except TimeoutError:
            await self.abort()
            raise ToolExecutionError(
                self.command, None, self._output + "\n[timed out waiting for certbot]"
            ) from None

        window = self._output[self._consumed :]
        self._consumed = len(self._output)
        if not prompted:
            return None

        challenges = parse_dns_challenges(window)
        if not challenges:
            # A prompt without a challenge (for example a notice); acknowledge it.
            await self.proceed()
            return await self.next_challenge()
        self._pending.extend(challenges[1:])
        return challenges[0]

    async def proceed(self) -> None:
        if self.process.stdin is None or self.process.returncode is not None:
            return
        self.process.stdin.write(b"\n")
        await self.process.stdin.drain()

    async def finish(self) -> str:
        assert self.process.stdout is not None
        rest = await self.process.stdout.read()
        self._output += rest.decode(errors="replace")
        returncode = await self.process.wait()
        if returncode != 0:
            raise _failure(self.command, returncode, self._output, "issue a certificate")
        return self._output

    async def abort(self) -> None:
        if self.process.returncode is None:
            self.process.terminate()
            try:
                await asyncio.wait_for(self.process.wait(), timeout=5.0)
            except TimeoutError:
                self.process.kill()
                await self.process.wait()
        logger.info("Certificate tool aborted", command=self.command)


def _failure(command: str, returncode: int | None, output: str, task: str) -> Exception:
    if looks_like_permission_error(output):
        return PermissionDenied(
            task,
            command=f"sudo {command}",
            instructions=(
                f"Run the command as root:\n  sudo {command}\n"
                "or grant the current user write access to the certificate directories."
            ),
        )
    return ToolExecutionError(command, returncode, output)


class ShellToolRunner:
    """ToolRunner backed by certbot, openssl and aiodns."""

    def __init__(
        self,
        certbot_binary: str = "certbot",
        openssl_binary: str = "openssl",
        nameservers: list[str] | None = None,
        timeout: float = 300.0,
    ) -> None:
        """Initialize the runner.

        Args:
            certbot_binary: ACME client executable.
            openssl_binary: OpenSSL executable.
            nameservers: Resolvers for TXT lookups, system default when empty.
            timeout: Seconds a non-interactive command may run.
        """
        self.certbot_binary = certbot_binary
        self.openssl_binary = openssl_binary
        self.nameservers = nameservers or []
        self.timeout = timeout
        self._resolver: aiodns.DNSResolver | None = None

    def _get_resolver(self) -> aiodns.DNSResolver:
        """Get or create DNS resolver with proper event loop handling."""
        if self._resolver is None:
            kwargs = {"nameservers": self.nameservers} if self.nameservers else {}
            if sys.platform == "win32":
                try:
                    loop = asyncio.get_running_loop()
                except RuntimeError:
                    loop = asyncio.new_event_loop()
                self._resolver = aiodns.DNSResolver(loop=loop, **kwargs)
            else:
                self._resolver = aiodns.DNSResolver(**kwargs)
        return self._resolver

    async def _run(self, args: list[str], task: str) -> str:
        command = shlex.join(args)
        logger.debug("Running tool", command=command)
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError as e:
            raise ToolExecutionError(command, None, f"{args[0]} not found: {e}") from e
        except PermissionError as e:
            raise _failure(command, None, str(e), task) from e

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except TimeoutError:
            process.kill()
            await process.wait()
            raise ToolExecutionError(
                command, None, f"timed out after {self.timeout:.0f}s"
            ) from None

        output = stdout.decode(errors="replace")
        if process.returncode != 0:
            raise _failure(command, process.returncode, output, task)
        return output

    async def issue_certificate(self, domain: str, email: str) -> CertbotSession:
        args = [
            self.certbot_binary,
            "certonly",
            "--manual",
            "--preferred-challenges",
            "dns",
            "--agree-tos",
            "--email",
            email,
            "--cert-name",
            domain,
            "-d",
            domain,
        ]
        command = shlex.join(args)
        logger.info("Starting certificate issuance", domain=domain, command=command)
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError as e:
            raise ToolExecutionError(command, None, f"{args[0]} not found: {e}") from e
        return CertbotSession(process, command, read_timeout=self.timeout)

    async def renew_certificate(self, domain: str) -> str:
        return await self._run(
            [self.certbot_binary, "renew", "--cert-name", domain, "--non-interactive"],
            f"renew the certificate for {domain}",
        )

    async def generate_self_signed(
        self,
        cert_path: Path,
        key_path: Path,
        common_name: str,
        days: int = 365,
        key_bits: int = 2048,
    ) -> str:
        args = [
            self.openssl_binary,
            "req",
            "-x509",
            "-nodes",
            "-days",
            str(days),
            "-newkey",
            f"rsa:{key_bits}",
            "-keyout",
            str(key_path),
            "-out",
            str(cert_path),
            "-subj",
            f"/CN={common_name}",
        ]
        task = "generate the default self-signed certificate"
        for directory in {cert_path.parent, key_path.parent}:
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except PermissionError as e:
                raise _failure(shlex.join(args), None, str(e), task) from e
        return await self._run(args, task)

    async def query_txt_record(self, name: str) -> list[str]:
        """Return the TXT strings published at ``name`` (empty when none)."""
        resolver = self._get_resolver()
        try:
            result = await resolver.query_dns(name, "TXT")
        except aiodns.error.DNSError as e:
            logger.debug("TXT lookup failed", name=name, error=str(e))
            return []
        records = getattr(result, "answer", result) or []
        return [_txt_value(record) for record in records]
