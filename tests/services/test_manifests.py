import base64
import json

import yaml

from serverdeployer.models import JobDescriptor, VolumeMount, VolumeSettings, VolumesConfig
from serverdeployer.services.manifests import (
    ManifestBuilder,
    get_server_mounts,
    get_server_ports,
    tune_mounts,
)


def test_debug_ports_only_with_debug():
    names = {port.name for port in get_server_ports(debug=False)}
    debug_names = {port.name for port in get_server_ports(debug=True)}

    assert "tomcat-debug" not in names
    assert "tomcat-debug" in debug_names
    assert "tftp" in names


def test_tune_mounts_applies_sizes_and_default_class():
    volumes = VolumesConfig(storage_class="fast", database=VolumeSettings(size="80Gi", storage_class="ssd"))

    tuned = {mount.name: mount for mount in tune_mounts(get_server_mounts(), volumes)}

    assert tuned["var-pgsql"].size == "80Gi"
    assert tuned["var-pgsql"].storage_class == "ssd"
    assert tuned["srv-www"].size == "100Gi"
    assert tuned["etc-rhn"].storage_class == "fast"
    assert tuned["etc-rhn"].size == ""


def test_persistent_volume_claims_use_default_size():
    claims = ManifestBuilder("ns").persistent_volume_claims([VolumeMount("etc-rhn", "/etc/rhn")])

    assert claims[0]["spec"]["resources"]["requests"]["storage"] == "10Gi"
    assert "storageClassName" not in claims[0]["spec"]


def test_job_never_restarts():
    job = ManifestBuilder("ns").job(JobDescriptor(name="uyuni-db-finalize", image="server:5.1", script="true"))

    assert job["spec"]["backoffLimit"] == 0
    assert job["spec"]["template"]["spec"]["restartPolicy"] == "Never"
    assert job["metadata"]["namespace"] == "ns"


def test_services_are_grouped_per_service_name():
    services = ManifestBuilder("ns").services(get_server_ports(debug=False))

    by_name = {service["metadata"]["name"]: service for service in services}
    assert set(by_name) == {"web", "uyuni-tcp", "uyuni-udp"}
    assert by_name["uyuni-udp"]["spec"]["ports"][0]["protocol"] == "UDP"


def test_traefik_ingresses_add_redirect():
    ingresses = ManifestBuilder("ns").ingresses("server.example.com", "uyuni-ca-issuer", "traefik")

    names = [ingress["metadata"]["name"] for ingress in ingresses]
    assert names == ["uyuni-ingress-ssl", "uyuni-ingress-nossl", "uyuni-ingress-ssl-redirect"]
    annotations = ingresses[0]["metadata"]["annotations"]
    assert annotations["cert-manager.io/issuer"] == "uyuni-ca-issuer"
    assert ingresses[0]["spec"]["tls"][0]["secretName"] == "uyuni-cert"


def test_nginx_ingresses_without_issuer():
    ingresses = ManifestBuilder("ns").ingresses("server.example.com", "", "nginx")

    assert len(ingresses) == 2
    assert "cert-manager.io/issuer" not in ingresses[0]["metadata"]["annotations"]
    assert ingresses[1]["metadata"]["annotations"]["nginx.ingress.kubernetes.io/ssl-redirect"] == "false"


def test_traefik_routes_skip_web_service():
    routes = ManifestBuilder("ns").traefik_routes(get_server_ports(debug=False))

    kinds = [route["kind"] for route in routes]
    assert kinds[0] == "Middleware"
    assert "IngressRouteUDP" in kinds
    assert all(route["metadata"]["name"] != "web-http-route" for route in routes)


def test_db_secret_is_base64_encoded():
    secret = ManifestBuilder("ns").db_secret("spacewalk", "secret")

    assert secret["metadata"]["name"] == "db-credentials"
    assert secret["data"] == {"username": "c3BhY2V3YWxr", "password": "c2VjcmV0"}


def test_traefik_node_config_matches_route_entry_points():
    builder = ManifestBuilder("uyuni")
    ports = get_server_ports(debug=False)

    config = builder.node_config("traefik", ports)[0]
    route_entry_points = {
        route["spec"]["entryPoints"][0] for route in builder.traefik_routes(ports) if route["kind"] != "Middleware"
    }

    assert config["kind"] == "HelmChartConfig"
    assert config["metadata"] == {"name": "traefik", "namespace": "kube-system"}
    entry_points = yaml.safe_load(config["spec"]["valuesContent"])["ports"]
    assert set(entry_points) == route_entry_points
    assert entry_points["uyuni-udp-tftp"] == {
        "port": 69,
        "expose": {"default": True},
        "exposedPort": 69,
        "protocol": "UDP",
    }
    assert "web-http" not in entry_points


def test_nginx_node_config_maps_ports_to_services():
    config = ManifestBuilder("uyuni").node_config("nginx", get_server_ports(debug=False))[0]

    values = yaml.safe_load(config["spec"]["valuesContent"])
    assert config["metadata"]["name"] == "rke2-ingress-nginx"
    assert values["tcp"]["4505"] == "uyuni/uyuni-tcp:4505"
    assert values["udp"]["69"] == "uyuni/uyuni-udp:69"
    assert "80" not in values["tcp"]


def test_node_config_unknown_ingress_is_empty():
    assert ManifestBuilder("uyuni").node_config("", get_server_ports(debug=False)) == []


def test_scc_pull_secret_holds_registry_auth():
    secret = ManifestBuilder("uyuni").scc_pull_secret("scc-user", "scc-pass")

    assert secret["type"] == "kubernetes.io/dockerconfigjson"
    config = json.loads(base64.b64decode(secret["data"][".dockerconfigjson"]))
    auth = config["auths"]["registry.suse.com"]
    assert auth["username"] == "scc-user"
    assert base64.b64decode(auth["auth"]).decode("utf-8") == "scc-user:scc-pass"
