"""API endpoint information: address, token and how to dial it."""

from __future__ import annotations

import ipaddress
import logging
import re
from dataclasses import dataclass
from urllib.parse import urlsplit

log = logging.getLogger("cliutil")

_PREFIXED_INFO = re.compile(
    r"^[a-zA-Z0-9\\-_]+?\\.[a-zA-Z0-9\\-_]+?\\.([a-zA-Z0-9\\-_]+)?:.+$"
)

_VALUELESS = frozenset({"ws", "wss", "http", "https", "tls", "quic", "p2p-circuit"})
_VALUED = frozenset({"ip4", "ip6", "dns", "dns4", "dns6", "dnsaddr", "tcp", "udp", "p2p", "ipfs", "sni"})
_HOSTS = frozenset({"ip4", "ip6", "dns", "dns4", "dns6"})


def _check_value(protocol: str, value: str) -> None:
    if protocol == "ip4":
        ipaddress.IPv4Address(value)
    elif protocol == "ip6":
        ipaddress.IPv6Address(value)
    elif protocol in ("tcp", "udp"):
        if not value.isdigit() or int(value) > 65535:
            raise ValueError(f"invalid port: {value}")
    elif not value:
        raise ValueError(f"empty value for protocol {protocol}")


def _parse_multiaddr(text: str) -> list[tuple[str, str | None]]:
    if not text.startswith("/"):
        raise ValueError("invalid multiaddr, must begin with /")
    parts = text.split("/")[1:]
    if parts and parts[-1] == "":
        parts.pop()
    if not parts:
        raise ValueError("empty multiaddr")
    components: list[tuple[str, str | None]] = []
    items = iter(parts)
    for protocol in items:
        if protocol == "unix":
            rest = list(items)
            if not rest:
                raise ValueError("unix protocol requires a path")
            components.append(("unix", "/" + "/".join(rest)))
            break
        if protocol in _VALUELESS:
            components.append((protocol, None))
        elif protocol in _VALUED:
            value = next(items, None)
            if value is None:
                raise ValueError(f"unexpected end of multiaddr after {protocol}")
            _check_value(protocol, value)
            components.append((protocol, value))
        else:
            raise ValueError(f"no protocol with name {protocol}")
    return components


def _dial_address(components: list[tuple[str, str | None]]) -> str:
    protocol, host = components[0]
    if protocol == "unix" and len(components) == 1:
        return host or ""
    if protocol not in _HOSTS or host is None:
        raise ValueError(f"{protocol} is not a thin waist address")
    if len(components) == 1:
        return host
    if len(components) == 2 and components[1][0] in ("tcp", "udp"):
        port = components[1][1]
        return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"
    raise ValueError("not a thin waist address")


@dataclass(frozen=True)
class APIInfo:
    """Where an API listens and the token used to reach it."""

    addr: str
    token: str = ""

    def dial_args(self, version: str) -> str:
        """The URL to dial for the given API version."""
        try:
            components = _parse_multiaddr(self.addr)
        except ValueError:
            urlsplit(self.addr)
            return f"{self.addr}/rpc/{version}"
        return f"ws://{_dial_address(components)}/rpc/{version}"

    def host(self) -> str:
        """The host and port of the API."""
        try:
            components = _parse_multiaddr(self.addr)
        except ValueError:
            netloc = urlsplit(self.addr).netloc
            return netloc.rpartition("@")[2]
        return _dial_address(components)

    def auth_header(self) -> dict[str, str] | None:
        """An Authorization header carrying the token, or None without one."""
        if self.token:
            return {"Authorization": "Bearer " + self.token}
        log.warning("API Token not set and requested, capabilities might be limited.")
        return None


def parse_api_info(s: str) -> APIInfo:
    """Split ``token:address`` into its parts; a string without a token is all address."""
    prefix = ""
    if _PREFIXED_INFO.match(s):
        prefix, s = s.split(":", 1)
    return APIInfo(addr=s, token=prefix)