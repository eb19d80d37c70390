"""Private, internal and reserved address ranges that must never be scanned."""
import ipaddress
from typing import Optional, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

HEX_DIGITS = "0123456789abcdefABCDEF"

PRIVATE_IPV4_NETWORKS = tuple(
    ipaddress.IPv4Network(cidr)
    for cidr in (
        "0.0.0.0/8",
        "10.0.0.0/8",
        "100.64.0.0/10",  # carrier-grade NAT
        "127.0.0.0/8",
        "169.254.0.0/16",  # link-local, cloud metadata
        "172.16.0.0/12",
        "192.0.0.0/24",
        "192.0.2.0/24",  # TEST-NET-1
        "192.168.0.0/16",
        "198.18.0.0/15",  # benchmarking
        "198.51.100.0/24",  # TEST-NET-2
        "203.0.113.0/24",  # TEST-NET-3
        "224.0.0.0/4",  # multicast
        "240.0.0.0/4",  # reserved, includes broadcast
    )
)

PRIVATE_IPV6_NETWORKS = tuple(
    ipaddress.IPv6Network(cidr)
    for cidr in (
        "::/128",
        "::1/128",
        "fe80::/10",
        "fc00::/7",
        "ff00::/8",
    )
)


def parse_ip(value: str) -> Optional[IPAddress]:
    """Parse an IPv4/IPv6 literal, tolerating surrounding brackets. None if not an address."""
    candidate = value.strip()
    if candidate.startswith("[") and candidate.endswith("]"):
        candidate = candidate[1:-1]
    try:
        return ipaddress.ip_address(candidate)
    except ValueError:
        return None


def is_private_ipv4(address: Union[str, ipaddress.IPv4Address]) -> bool:
    if isinstance(address, str):
        try:
            address = ipaddress.IPv4Address(address)
        except ValueError:
            return False
    return any(address in network for network in PRIVATE_IPV4_NETWORKS)


def is_private_ipv6(address: Union[str, ipaddress.IPv6Address]) -> bool:
    if isinstance(address, str):
        parsed = parse_ip(address)
        if not isinstance(parsed, ipaddress.IPv6Address):
            return False
        address = parsed

    # ::ffff:a.b.c.d is judged by the embedded IPv4 address
    if address.ipv4_mapped is not None:
        return is_private_ipv4(address.ipv4_mapped)

    return any(address in network for network in PRIVATE_IPV6_NETWORKS)


def is_private_address(value: str) -> bool:
    address = parse_ip(value)
    if address is None:
        return False
    if address.version == 4:
        return is_private_ipv4(address)
    return is_private_ipv6(address)


def _url_ipv4_number(part: str) -> int:
    if part[:2].lower() == "0x":
        digits, base, allowed = part[2:], 16, HEX_DIGITS
    elif len(part) > 1 and part.startswith("0"):
        digits, base, allowed = part[1:], 8, "01234567"
    else:
        digits, base, allowed = part, 10, "0123456789"
    if not all(c in allowed for c in digits):
        raise ValueError(f"not a number: {part!r}")
    return int(digits, base) if digits else 0


def _ends_in_number(host: str) -> bool:
    labels = host.split(".")
    if labels[-1] == "" and len(labels) > 1:
        labels.pop()
    last = labels[-1]
    if last.isdigit():
        return True
    return last[:2].lower() == "0x" and all(c in HEX_DIGITS for c in last[2:])


def parse_url_ipv4(host: str) -> Optional[str]:
    """
    Read a hostname the way browsers do when it ends in a number.

    "127.0.0.01", "0x7f.1", "017700000001" and "2130706433" all navigate to
    127.0.0.1 in Chrome, so they are canonicalised before any range check.
    Returns None for ordinary hostnames and raises ValueError for numeric
    hosts a browser would refuse.
    """
    if not host or not _ends_in_number(host):
        return None

    parts = host.split(".")
    if parts[-1] == "":
        parts.pop()
    if not 1 <= len(parts) <= 4 or any(part == "" for part in parts):
        raise ValueError(f"invalid IPv4 address: {host!r}")

    numbers = [_url_ipv4_number(part) for part in parts]
    if any(number > 255 for number in numbers[:-1]):
        raise ValueError(f"invalid IPv4 address: {host!r}")
    if numbers[-1] >= 256 ** (5 - len(numbers)):
        raise ValueError(f"invalid IPv4 address: {host!r}")

    value = numbers[-1]
    for index, number in enumerate(numbers[:-1]):
        value += number * 256 ** (3 - index)
    return str(ipaddress.IPv4Address(value))
