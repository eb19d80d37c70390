import pytest

from app.platform.utils.ip_ranges import (
    is_private_address,
    is_private_ipv4,
    is_private_ipv6,
    parse_ip,
    parse_url_ipv4,
)


@pytest.mark.parametrize(
    "address",
    [
        "10.1.2.3",
        "100.64.0.1",
        "127.0.0.1",
        "169.254.169.254",
        "172.31.255.255",
        "192.168.0.10",
        "198.18.0.1",
        "224.0.0.1",
        "255.255.255.255",
        "0.1.2.3",
    ],
)
def test_private_ipv4(address):
    assert is_private_ipv4(address)
    assert is_private_address(address)


@pytest.mark.parametrize("address", ["8.8.8.8", "93.184.216.34", "172.32.0.1", "1.1.1.1"])
def test_public_ipv4(address):
    assert not is_private_ipv4(address)
    assert not is_private_address(address)


@pytest.mark.parametrize(
    "address",
    ["::1", "::", "fe80::1", "fd12:3456::1", "fc00::1", "ff02::1", "::ffff:10.0.0.1", "[::1]"],
)
def test_private_ipv6(address):
    assert is_private_ipv6(address)
    assert is_private_address(address)


@pytest.mark.parametrize("address", ["2606:4700:4700::1111", "2001:4860:4860::8888", "::ffff:8.8.8.8"])
def test_public_ipv6(address):
    assert not is_private_ipv6(address)
    assert not is_private_address(address)


def test_non_addresses_are_not_private():
    assert parse_ip("example.com") is None
    assert not is_private_address("example.com")
    assert not is_private_ipv4("not-an-ip")
    assert not is_private_ipv6("10.0.0.1")


@pytest.mark.parametrize(
    "host, expected",
    [
        ("127.0.0.01", "127.0.0.1"),
        ("010.0.0.5", "8.0.0.5"),
        ("0x7f.1", "127.0.0.1"),
        ("127.1", "127.0.0.1"),
        ("2130706433", "127.0.0.1"),
        ("0xA9.0xFE.0xA9.0xFE", "169.254.169.254"),
        ("8.8.8.8.", "8.8.8.8"),
    ],
)
def test_parse_url_ipv4_reads_numeric_hosts_like_a_browser(host, expected):
    assert parse_url_ipv4(host) == expected


@pytest.mark.parametrize("host", ["example.com", "1.example.com", "[::1]", ""])
def test_parse_url_ipv4_ignores_hostnames(host):
    assert parse_url_ipv4(host) is None


@pytest.mark.parametrize("host", ["256.1.1.1", "1.2.3.4.5", "08.1.1.1", "1..2.3", "example.123", "4294967296"])
def test_parse_url_ipv4_rejects_numbers_a_browser_refuses(host):
    with pytest.raises(ValueError):
        parse_url_ipv4(host)
