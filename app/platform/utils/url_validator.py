"""
Static checks for user-supplied scan targets.

Pure and synchronous: everything here runs before any network call and
rejects the bulk of abusive input cheaply. A hostname that passes can still
resolve to an internal address, which is what the DNS guard is for.
"""
import re
from typing import Optional
from urllib.parse import unquote, urlsplit

from app.platform.exceptions import AppError
from app.platform.utils.ip_ranges import is_private_ipv4, is_private_ipv6, parse_ip, parse_url_ipv4

MAX_INPUT_LENGTH = 253

BLOCKED_HOSTNAMES = frozenset(
    {
        "localhost",
        "localhost.localdomain",
        "broadcasthost",
        "ip6-localhost",
        "ip6-loopback",
        "ip6-localnet",
        "ip6-mcastprefix",
        "ip6-allnodes",
        "ip6-allrouters",
        # cloud metadata endpoints
        "metadata.google.internal",
        "metadata.google.com",
        "metadata",
        "instance-data",
    }
)

BLOCKED_TLD_SUFFIXES = (
    ".local",
    ".internal",
    ".test",
    ".example",
    ".invalid",
    ".localhost",
    ".onion",
)

METADATA_IP = "169.254.169.254"
BROADCAST_IPS = ("0.0.0.0", "255.255.255.255")

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)
_PORT_RE = re.compile(r":\d+$")
_IPV4_SHAPE_RE = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")
_CONTROL_RE = re.compile(r"[\s\x00-\x1f\x7f]")
_HOSTNAME_CHARS_RE = re.compile(r"^[a-z0-9._-]+$")


class DomainValidationError(AppError):
    error_code = "rejected"


def _ipv4_literal(hostname: str) -> Optional[str]:
    try:
        return parse_url_ipv4(hostname)
    except ValueError:
        raise DomainValidationError("Invalid IP address.")


def _decimal_reading(quad: str) -> str:
    return ".".join(str(int(octet)) for octet in quad.split("."))


def _extract_hostname(value: str) -> str:
    hostname = _SCHEME_RE.sub("", value.strip().lower())

    for separator in ("/", "?", "#"):
        index = hostname.find(separator)
        if index != -1:
            hostname = hostname[:index]

    if hostname.startswith("["):
        # bracketed IPv6 literal, optionally followed by a port
        closing = hostname.find("]")
        if closing != -1:
            hostname = hostname[: closing + 1]
    elif hostname.count(":") == 1:
        hostname = _PORT_RE.sub("", hostname)

    return hostname.rstrip(".")


def validate_domain_input(raw: str) -> str:
    """
    Reject empty, oversized, local, internal or malformed targets.

    Returns the extracted hostname; raises DomainValidationError with a
    user-facing reason otherwise.
    """
    if not raw or not isinstance(raw, str):
        raise DomainValidationError("Domain is required.")

    trimmed = raw.strip()
    if not trimmed:
        raise DomainValidationError("Domain cannot be empty.")

    if len(trimmed) > MAX_INPUT_LENGTH:
        raise DomainValidationError(
            f"Domain input too long (max {MAX_INPUT_LENGTH} characters)."
        )

    hostname = _extract_hostname(trimmed)

    if hostname in BLOCKED_HOSTNAMES:
        raise DomainValidationError("Scanning localhost or local hostnames is not allowed.")

    for suffix in BLOCKED_TLD_SUFFIXES:
        if hostname.endswith(suffix) or hostname == suffix[1:]:
            raise DomainValidationError(
                f'Scanning domains with "{suffix}" TLD is not allowed.'
            )

    # numeric hosts are judged by the address a browser reads, and zero-padded
    # quads by their decimal reading as well
    numeric = unquote(hostname)
    if _IPV4_SHAPE_RE.match(numeric):
        decimal = _decimal_reading(numeric)
        if decimal != numeric and is_private_ipv4(decimal):
            raise DomainValidationError("Scanning internal/private IP addresses is not allowed.")

    literal = _ipv4_literal(numeric)
    if literal is not None:
        hostname = literal

    if hostname == METADATA_IP:
        raise DomainValidationError("Scanning cloud metadata endpoints is not allowed.")

    if hostname in BROADCAST_IPS:
        raise DomainValidationError("Scanning broadcast or null IP addresses is not allowed.")

    if _IPV4_SHAPE_RE.match(hostname) and is_private_ipv4(hostname):
        raise DomainValidationError("Scanning internal/private IP addresses is not allowed.")

    address = parse_ip(hostname)
    if address is not None and address.version == 6 and is_private_ipv6(address):
        raise DomainValidationError("Scanning internal IPv6 addresses is not allowed.")

    if "." not in hostname and not _IPV4_SHAPE_RE.match(hostname):
        raise DomainValidationError("Invalid domain: must contain a dot (e.g. example.com).")

    if _CONTROL_RE.search(hostname):
        raise DomainValidationError("Domain contains invalid characters.")

    return hostname


def normalize_domain(raw: str) -> str:
    """
    Canonical hostname for a scan target: percent-decoded, lowercased, without
    scheme, port, path or trailing dots. A leading "www." is kept.
    """
    try:
        decoded = unquote(raw, errors="strict")
    except UnicodeDecodeError:
        raise DomainValidationError(f'Invalid domain: "{raw}"')

    domain = _extract_hostname(decoded)

    if not domain or " " in domain:
        raise DomainValidationError(f'Invalid domain: "{raw}"')

    literal = _ipv4_literal(domain)
    if literal is not None:
        validate_domain_input(domain)
        domain = literal

    if "." not in domain:
        raise DomainValidationError(f'Domain must contain at least one dot: "{raw}"')

    if not domain.isascii():
        try:
            domain = domain.encode("idna").decode("ascii")
        except UnicodeError:
            raise DomainValidationError(f'Invalid domain: "{raw}"')

    # userinfo ("user@host"), brackets or stray punctuation never reach the browser
    if not _HOSTNAME_CHARS_RE.match(domain):
        raise DomainValidationError("Domain contains invalid characters.")

    # percent-decoding can reveal a blocked target the raw input hid
    if domain != _extract_hostname(raw):
        validate_domain_input(domain)

    return domain


def build_scan_url(raw: str, domain: str) -> str:
    """
    URL the engine should navigate to.

    The host is always the validated canonical domain; only scheme, path and
    query are carried over from the raw input.
    """
    trimmed = raw.strip()
    if not _SCHEME_RE.match(trimmed):
        return f"https://{domain}/"

    parts = urlsplit(trimmed)
    path = parts.path or "/"
    query = f"?{parts.query}" if parts.query else ""
    return f"{parts.scheme.lower()}://{domain}{path}{query}"
