import pytest
import os
import sys
from pathlib import Path

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from regions_updater.regions import Region, Server, ServerGroup  # noqa: E402

# Environment variables for testing
os.environ.setdefault("NAMESPACE", "regions-test")

SERVERS_LIST_URL = "https://serverlist.test/vpninfo/servers/v6"


def make_region(region_id, name=None, wireguard=(), **kwargs):
    """Build a region with the given WireGuard servers, as (ip, latency_ms) pairs or Servers."""
    servers = []
    for item in wireguard:
        if isinstance(item, Server):
            servers.append(item)
        else:
            ip, latency = item
            servers.append(Server(ip=ip, cn=f"{region_id}-{ip}", latency_ms=latency))
    return Region(
        id=region_id,
        name=name if name is not None else region_id,
        servers=ServerGroup(wireguard=tuple(servers)),
        **kwargs,
    )


@pytest.fixture
def catalog_payload():
    """A servers list like the one served by the VPN provider."""
    return {
        "groups": {"wg": [{"name": "wireguard", "ports": [1337]}]},
        "regions": [
            {
                "id": "de-frankfurt",
                "name": "DE Frankfurt",
                "country": "DE",
                "auto_region": True,
                "dns": "de-frankfurt.privacy.network",
                "port_forward": True,
                "geo": False,
                "offline": False,
                "servers": {
                    "meta": [{"ip": "212.102.57.138", "cn": "frankfurt402"}],
                    "ovpnudp": [{"ip": "195.181.170.225", "cn": "frankfurt401", "van": True}],
                    "wg": [
                        {"ip": "10.0.0.1", "cn": "frankfurt403"},
                        {"ip": "10.0.0.2", "cn": "frankfurt404"},
                    ],
                },
            },
            {
                "id": "us_california",
                "name": "US California",
                "country": "US",
                "auto_region": True,
                "dns": "us-california.privacy.network",
                "port_forward": False,
                "geo": False,
                "offline": False,
                "servers": {
                    "ikev2": [{"ip": "91.207.175.5", "cn": "losangeles409"}],
                },
            },
        ],
    }
