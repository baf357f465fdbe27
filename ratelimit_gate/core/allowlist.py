"""CIDR allowlist for exempting trusted clients from rate limiting."""

from __future__ import annotations

import ipaddress
from typing import Iterable

from ratelimit_gate.core.errors import InvalidConfigAppError

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


def parse_cidr_list(ranges: str | None) -> list[str]:
    """Split a comma-separated CIDR list into trimmed, non-empty entries.

    Examples:
        >>> parse_cidr_list("10.0.0.0/8, 192.168.0.0/16")
        ['10.0.0.0/8', '192.168.0.0/16']
        >>> parse_cidr_list(None)
        []
    """
    if not ranges:
        return []
    return [item.strip() for item in ranges.split(",") if item.strip()]


class AllowlistMatcher:
    """Immutable set of IP networks with a membership test."""

    __slots__ = ("_networks",)

    def __init__(self, ranges: Iterable[str] = ()) -> None:
        """Parse the configured ranges.

        Args:
            ranges: CIDR strings; bare addresses are treated as /32 or /128.

        Raises:
            InvalidConfigAppError: If an entry is not a valid network.
        """
        networks: list[IPNetwork] = []
        for cidr in ranges:
            try:
                networks.append(ipaddress.ip_network(cidr, strict=False))
            except ValueError as exc:
                raise InvalidConfigAppError(
                    code="invalid_config",
                    message=f"Invalid CIDR range in whitelist_ip_range: {cidr!r}",
                    details={"setting": "whitelist_ip_range", "value": str(cidr)},
                ) from exc
        self._networks: tuple[IPNetwork, ...] = tuple(networks)

    @property
    def networks(self) -> tuple[IPNetwork, ...]:
        return self._networks

    def contains(self, ip: str) -> bool:
        """Return True if ``ip`` falls inside any configured range.

        Unparsable addresses never match. IPv4-mapped IPv6 addresses
        (``::ffff:10.0.0.1``) are compared as IPv4.
        """
        if not self._networks or not ip:
            return False
        try:
            address = ipaddress.ip_address(ip)
        except ValueError:
            return False

        if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
            address = address.ipv4_mapped

        return any(address in network for network in self._networks if network.version == address.version)

    def __len__(self) -> int:
        return len(self._networks)
