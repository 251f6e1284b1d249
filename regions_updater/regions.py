from dataclasses import dataclass, field, replace
from typing import Iterable

import yaml

# Catalog key -> ServerGroup attribute
FAMILIES = {
    "ikev2": "ikev2",
    "meta": "meta",
    "ovpntcp": "openvpn_tcp",
    "ovpnudp": "openvpn_udp",
    "wg": "wireguard",
}


@dataclass(frozen=True)
class Server:
    ip: str
    cn: str
    van: bool = False
    latency_ms: float | None = None  # set only after a successful probe

    @classmethod
    def from_catalog(cls, data: dict) -> "Server":
        return cls(
            ip=str(data.get("ip") or ""),
            cn=str(data.get("cn") or ""),
            van=bool(data.get("van", False)),
        )

    def to_payload(self) -> dict:
        payload = {"ip": self.ip, "cn": self.cn}
        if self.van:
            payload["van"] = True
        if self.latency_ms is not None:
            payload["latencyMs"] = self.latency_ms
        return payload

    @classmethod
    def from_payload(cls, data: dict) -> "Server":
        latency = data.get("latencyMs")
        return cls(
            ip=data["ip"],
            cn=data["cn"],
            van=bool(data.get("van", False)),
            latency_ms=None if latency is None else float(latency),
        )


@dataclass(frozen=True)
class ServerGroup:
    ikev2: tuple[Server, ...] = ()
    meta: tuple[Server, ...] = ()
    openvpn_tcp: tuple[Server, ...] = ()
    openvpn_udp: tuple[Server, ...] = ()
    wireguard: tuple[Server, ...] = ()

    @classmethod
    def from_catalog(cls, data: dict) -> "ServerGroup":
        return cls(**{
            attr: tuple(Server.from_catalog(s) for s in data.get(key) or ())
            for key, attr in FAMILIES.items()
        })

    def to_payload(self) -> dict:
        payload = {}
        for key, attr in FAMILIES.items():
            servers = getattr(self, attr)
            if servers:
                payload[key] = [s.to_payload() for s in servers]
        return payload

    @classmethod
    def from_payload(cls, data: dict) -> "ServerGroup":
        return cls(**{
            attr: tuple(Server.from_payload(s) for s in data.get(key) or ())
            for key, attr in FAMILIES.items()
        })


@dataclass(frozen=True)
class Region:
    id: str
    name: str
    country: str = ""
    auto_region: bool = False
    dns: str = ""
    port_forward: bool = False
    geo: bool = False
    offline: bool = False
    servers: ServerGroup = field(default_factory=ServerGroup)

    @property
    def latency_ms(self) -> float | None:
        """Lowest latency among the measured WireGuard servers."""
        latencies = [s.latency_ms for s in self.servers.wireguard if s.latency_ms is not None]
        return min(latencies) if latencies else None

    def with_wireguard(self, servers: Iterable[Server]) -> "Region":
        """Return a copy of the region with its WireGuard servers replaced."""
        return replace(self, servers=replace(self.servers, wireguard=tuple(servers)))

    @classmethod
    def from_catalog(cls, data: dict) -> "Region":
        """Build a region from one entry of the servers list JSON."""
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            country=str(data.get("country") or ""),
            auto_region=bool(data.get("auto_region", False)),
            dns=str(data.get("dns") or ""),
            port_forward=bool(data.get("port_forward", False)),
            geo=bool(data.get("geo", False)),
            offline=bool(data.get("offline", False)),
            servers=ServerGroup.from_catalog(data.get("servers") or {}),
        )

    def to_payload(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "country": self.country,
            "autoRegion": self.auto_region,
            "dns": self.dns,
            "portForward": self.port_forward,
            "geo": self.geo,
            "offline": self.offline,
            "servers": self.servers.to_payload(),
        }

    @classmethod
    def from_payload(cls, data: dict) -> "Region":
        return cls(
            id=data["id"],
            name=data["name"],
            country=data.get("country", ""),
            auto_region=bool(data.get("autoRegion", False)),
            dns=data.get("dns", ""),
            port_forward=bool(data.get("portForward", False)),
            geo=bool(data.get("geo", False)),
            offline=bool(data.get("offline", False)),
            servers=ServerGroup.from_payload(data.get("servers") or {}),
        )


def dump_regions(regions: Iterable[Region]) -> bytes:
    """Serialize regions to the YAML document stored in the ConfigMap."""
    payload = [r.to_payload() for r in regions]
    return yaml.safe_dump(payload, sort_keys=False, allow_unicode=True).encode("utf-8")


def load_regions(data: bytes) -> list[Region]:
    return [Region.from_payload(item) for item in yaml.safe_load(data) or []]
