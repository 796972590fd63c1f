import stat
from pathlib import Path

import pytest
import yaml

from wg_gateway.config import (
    AllocationServiceConfig,
    ClientIdentity,
    GatewayIdentity,
    Keypair,
    ProvisionPaths,
    RenderedConfigFile,
)
from wg_gateway.errors import ConfigRenderError, ConfigWriteError
from wg_gateway.render import ConfigRenderer, client_config_name, write_config

GATEWAY_KEYS = Keypair(
    private_key="gPrivAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA=",
    public_key="gPubBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBB=",
)
CLIENT_KEYS = Keypair(
    private_key="cPrivCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCCC=",
    public_key="cPub/DDDDDDDDDDDDDDDDDDDDDDDDDDDDDDDDDDDD+D=",
)


def build_renderer(tmp_path: Path) -> ConfigRenderer:
    return ConfigRenderer(
        ProvisionPaths(
            gateway_config=tmp_path / "wireguard" / "wg0.conf",
            allocation_config=tmp_path / "wg-dynamic" / "config.yml",
            client_config_dir=tmp_path / "wireguard" / "clients",
            sysctl_conf=tmp_path / "sysctl.conf",
        )
    )


def test_gateway_config_layout(tmp_path: Path):
    rendered = build_renderer(tmp_path).render_gateway_config(
        GatewayIdentity(GATEWAY_KEYS), CLIENT_KEYS.public_key
    )

    assert rendered.path == tmp_path / "wireguard" / "wg0.conf"
    assert rendered.content == (
        "[Interface]\n"
        f"PrivateKey = {GATEWAY_KEYS.private_key}\n"
        "Address = 10.0.0.1/24\n"
        "ListenPort = 51820\n"
        "\n"
        "[Peer]\n"
        f"PublicKey = {CLIENT_KEYS.public_key}\n"
        "AllowedIPs = 10.0.0.2/32\n"
    )


def test_gateway_peer_allowed_ips_is_single_client(tmp_path: Path):
    rendered = build_renderer(tmp_path).render_gateway_config(
        GatewayIdentity(GATEWAY_KEYS, address="10.0.0.1/24"),
        CLIENT_KEYS.public_key,
        peer_address="10.0.0.2/32",
    )

    allowed = [
        line
        for line in rendered.content.splitlines()
        if line.startswith("AllowedIPs")
    ]
    assert allowed == ["AllowedIPs = 10.0.0.2/32"]


def test_gateway_config_requires_peer_key(tmp_path: Path):
    with pytest.raises(ConfigRenderError, match="peer_public_key"):
        build_renderer(tmp_path).render_gateway_config(
            GatewayIdentity(GATEWAY_KEYS), ""
        )


def test_allocation_config_document(tmp_path: Path):
    cfg = AllocationServiceConfig.for_gateway(GatewayIdentity(GATEWAY_KEYS))

    rendered = build_renderer(tmp_path).render_allocation_config(cfg)
    document = yaml.safe_load(rendered.content)

    assert list(document) == [
        "listen_address",
        "private_key",
        "public_key",
        "peer_limit",
        "database",
        "interface",
    ]
    assert document["listen_address"] == "127.0.0.1:5000"
    assert document["private_key"] == GATEWAY_KEYS.private_key
    assert document["public_key"] == GATEWAY_KEYS.public_key
    assert document["peer_limit"] == 100
    assert document["database"] == "/var/lib/wg-dynamic/database.sqlite3"
    assert document["interface"] == "wg0"


@pytest.mark.parametrize("peer_limit", [0, -5])
def test_allocation_config_rejects_bad_peer_limit(tmp_path: Path, peer_limit):
    cfg = AllocationServiceConfig.for_gateway(
        GatewayIdentity(GATEWAY_KEYS), peer_limit=peer_limit
    )

    with pytest.raises(ConfigRenderError, match="peer_limit"):
        build_renderer(tmp_path).render_allocation_config(cfg)


def test_allocation_config_requires_database(tmp_path: Path):
    cfg = AllocationServiceConfig.for_gateway(
        GatewayIdentity(GATEWAY_KEYS), database_path=""
    )

    with pytest.raises(ConfigRenderError, match="database_path"):
        build_renderer(tmp_path).render_allocation_config(cfg)


def test_client_config_peer_section(tmp_path: Path):
    rendered = build_renderer(tmp_path).render_client_config(
        ClientIdentity(CLIENT_KEYS), GATEWAY_KEYS.public_key, "203.0.113.5"
    )

    lines = rendered.content.splitlines()
    assert "Address = 10.0.0.2/24" in lines
    assert "DNS = 8.8.8.8" in lines
    assert f"PublicKey = {GATEWAY_KEYS.public_key}" in lines
    assert "Endpoint = 203.0.113.5:51820" in lines
    assert "AllowedIPs = 0.0.0.0/0, ::/0" in lines
    assert "PersistentKeepalive = 25" in lines


def test_client_config_ipv6_endpoint(tmp_path: Path):
    rendered = build_renderer(tmp_path).render_client_config(
        ClientIdentity(CLIENT_KEYS), GATEWAY_KEYS.public_key, "2001:db8::1"
    )

    assert "Endpoint = [2001:db8::1]:51820" in rendered.content


def test_client_config_path_keyed_by_public_key(tmp_path: Path):
    rendered = build_renderer(tmp_path).render_client_config(
        ClientIdentity(CLIENT_KEYS), GATEWAY_KEYS.public_key, "203.0.113.5"
    )

    assert rendered.path.parent == tmp_path / "wireguard" / "clients"
    assert rendered.path.name == client_config_name(CLIENT_KEYS.public_key)
    assert "/" not in rendered.path.name


def test_client_config_requires_endpoint(tmp_path: Path):
    with pytest.raises(ConfigRenderError, match="gateway_public_endpoint"):
        build_renderer(tmp_path).render_client_config(
            ClientIdentity(CLIENT_KEYS), GATEWAY_KEYS.public_key, None
        )


def test_rendered_files_are_owner_only(tmp_path: Path):
    renderer = build_renderer(tmp_path)
    gateway = GatewayIdentity(GATEWAY_KEYS)
    rendered = [
        renderer.render_gateway_config(gateway, CLIENT_KEYS.public_key),
        renderer.render_allocation_config(AllocationServiceConfig.for_gateway(gateway)),
        renderer.render_client_config(
            ClientIdentity(CLIENT_KEYS), GATEWAY_KEYS.public_key, "203.0.113.5"
        ),
    ]

    for item in rendered:
        assert item.owner_only
        path = write_config(item)
        mode = stat.S_IMODE(path.stat().st_mode)
        assert mode == 0o600
        assert mode & (stat.S_IRWXG | stat.S_IRWXO) == 0


def test_write_config_tightens_existing_file(tmp_path: Path):
    target = tmp_path / "wg0.conf"
    target.write_text("old")
    target.chmod(0o644)

    write_config(RenderedConfigFile(target, "new\n"))

    assert target.read_text() == "new\n"
    assert stat.S_IMODE(target.stat().st_mode) == 0o600


def test_write_config_failure(tmp_path: Path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")

    with pytest.raises(ConfigWriteError):
        write_config(RenderedConfigFile(blocker / "wg0.conf", "content\n"))


@pytest.mark.parametrize(
    "endpoint", ["203.0.113.5:51820", "vpn.example.net:443", "[2001:db8::1]:51820"]
)
def test_client_config_rejects_endpoint_with_port(tmp_path: Path, endpoint):
    with pytest.raises(ConfigRenderError, match="without a port"):
        build_renderer(tmp_path).render_client_config(
            ClientIdentity(CLIENT_KEYS), GATEWAY_KEYS.public_key, endpoint
        )


def test_client_config_bracketed_ipv6_endpoint(tmp_path: Path):
    rendered = build_renderer(tmp_path).render_client_config(
        ClientIdentity(CLIENT_KEYS), GATEWAY_KEYS.public_key, "[2001:db8::1]"
    )

    assert "Endpoint = [2001:db8::1]:51820" in rendered.content


@pytest.mark.parametrize("listen_port", [0, -1])
def test_gateway_config_rejects_bad_listen_port(tmp_path: Path, listen_port):
    with pytest.raises(ConfigRenderError, match="listen_port"):
        build_renderer(tmp_path).render_gateway_config(
            GatewayIdentity(GATEWAY_KEYS, listen_port=listen_port),
            CLIENT_KEYS.public_key,
        )


def test_client_config_rejects_bad_keepalive(tmp_path: Path):
    with pytest.raises(ConfigRenderError, match="persistent_keepalive"):
        build_renderer(tmp_path).render_client_config(
            ClientIdentity(CLIENT_KEYS, persistent_keepalive=0),
            GATEWAY_KEYS.public_key,
            "203.0.113.5",
        )
