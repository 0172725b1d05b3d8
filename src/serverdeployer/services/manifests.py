"""Kubernetes manifest builders for ServerDeployer."""

import base64
import json
from typing import Any, Dict, List, Optional, Sequence

from serverdeployer.constants import (
    APP_LABEL,
    CA_CONFIGMAP_NAME,
    CA_ISSUER_NAME,
    CA_SECRET_NAME,
    CERT_SECRET_NAME,
    COCO_COMPONENT,
    COCO_DEPLOY_NAME,
    COMPONENT_LABEL,
    DB_SECRET_NAME,
    HUB_API_COMPONENT,
    HUB_API_DEPLOY_NAME,
    SCC_REGISTRY,
    SCC_SECRET_NAME,
    SERVER_APP,
    SERVER_COMPONENT,
    SERVER_DEPLOY_NAME,
    SSH_CONFIGMAP_NAME,
    SSH_SECRET_NAME,
    WEB_SERVICE_NAME,
)
import yaml

from serverdeployer.models import JobDescriptor, PortMap, VolumeMount, VolumesConfig

TCP_SERVICE_NAME = "uyuni-tcp"
UDP_SERVICE_NAME = "uyuni-udp"
HUB_API_SERVICE_NAME = "hub-api"
SELF_SIGNED_ISSUER_NAME = "uyuni-issuer"
CA_CERTIFICATE_NAME = "uyuni-ca"
HTTPS_REDIRECT_MIDDLEWARE = "uyuni-https-redirect"
NODE_CONFIG_NAMESPACE = "kube-system"

WEB_PORTS = [PortMap(WEB_SERVICE_NAME, "http", 80, 80)]
PGSQL_PORTS = [
    PortMap(TCP_SERVICE_NAME, "pgsql", 5432, 5432),
    PortMap(TCP_SERVICE_NAME, "exporter", 9187, 9187),
]
SALT_PORTS = [
    PortMap(TCP_SERVICE_NAME, "publish", 4505, 4505),
    PortMap(TCP_SERVICE_NAME, "request", 4506, 4506),
]
COBBLER_PORTS = [PortMap(TCP_SERVICE_NAME, "cobbler", 25151, 25151)]
TASKO_PORTS = [
    PortMap(TCP_SERVICE_NAME, "tasko-jmx", 5556, 5556),
    PortMap(TCP_SERVICE_NAME, "tasko-mtrx", 9800, 9800),
    PortMap(TCP_SERVICE_NAME, "tasko-debug", 8001, 8001),
]
TOMCAT_PORTS = [
    PortMap(TCP_SERVICE_NAME, "tomcat-jmx", 5557, 5557),
    PortMap(TCP_SERVICE_NAME, "tomcat-debug", 8003, 8003),
]
SEARCH_PORTS = [PortMap(TCP_SERVICE_NAME, "search-debug", 8002, 8002)]
TFTP_PORTS = [PortMap(UDP_SERVICE_NAME, "tftp", 69, 69, protocol="udp")]
HUB_API_PORTS = [PortMap(HUB_API_SERVICE_NAME, "api", 2830, 2830)]

NO_SSL_PATHS = (
    "/pub",
    "/rhn/([^/])+/DownloadFile",
    "/(rhn/)?rpc/api",
    "/rhn/errors",
    "/rhn/ty/TinyUrl",
    "/rhn/websocket",
    "/rhn/metrics",
    "/cobbler_api",
    "/cblr",
    "/httpboot",
    "/images",
    "/cobbler",
    "/os-images",
    "/tftp",
    "/docs",
)


def get_server_ports(debug: bool) -> List[PortMap]:
    ports = WEB_PORTS + PGSQL_PORTS + SALT_PORTS + COBBLER_PORTS + TASKO_PORTS
    ports = ports + TOMCAT_PORTS + SEARCH_PORTS + TFTP_PORTS
    return [port for port in ports if debug or not port.name.endswith("debug")]


def get_server_mounts() -> List[VolumeMount]:
    return [
        VolumeMount("var-pgsql", "/var/lib/pgsql"),
        VolumeMount("var-cache", "/var/cache"),
        VolumeMount("var-spacewalk", "/var/spacewalk"),
        VolumeMount("var-log", "/var/log"),
        VolumeMount("srv-salt", "/srv/salt"),
        VolumeMount("srv-www", "/srv/www"),
        VolumeMount("srv-tftpboot", "/srv/tftpboot"),
        VolumeMount("srv-formulametadata", "/srv/formula_metadata"),
        VolumeMount("srv-pillar", "/srv/pillar"),
        VolumeMount("srv-susemanager", "/srv/susemanager"),
        VolumeMount("srv-spacewalk", "/srv/spacewalk"),
        VolumeMount("root", "/root"),
        VolumeMount("etc-apache2", "/etc/apache2"),
        VolumeMount("etc-rhn", "/etc/rhn"),
        VolumeMount("etc-systemd-multi", "/etc/systemd/system/multi-user.target.wants"),
        VolumeMount("etc-salt", "/etc/salt"),
        VolumeMount("etc-tomcat", "/etc/tomcat"),
        VolumeMount("etc-cobbler", "/etc/cobbler"),
        VolumeMount("etc-postfix", "/etc/postfix"),
    ]


def tune_mounts(mounts: Sequence[VolumeMount], volumes: VolumesConfig) -> List[VolumeMount]:
    """Applies the configured sizes and storage classes to the server mounts."""
    settings = {
        "var-pgsql": volumes.database,
        "var-spacewalk": volumes.packages,
        "srv-www": volumes.www,
        "var-cache": volumes.cache,
    }
    tuned = []
    for mount in mounts:
        setting = settings.get(mount.name)
        size = setting.size if setting and setting.size else mount.size
        storage_class = (setting.storage_class if setting else "") or volumes.storage_class
        tuned.append(VolumeMount(mount.name, mount.mount_path, size=size, storage_class=storage_class))
    return tuned


def get_labels(component: str = "") -> Dict[str, str]:
    labels = {APP_LABEL: SERVER_APP}
    if component:
        labels[COMPONENT_LABEL] = component
    return labels


def _b64(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


class ManifestBuilder:
    """Turns logical descriptors into wire-level objects for one namespace."""

    DEFAULT_VOLUME_SIZE = "10Gi"

    def __init__(self, namespace: str):
        self.namespace = namespace

    def _metadata(self, name: str, component: str = "", **extra: Any) -> Dict[str, Any]:
        metadata = {"name": name, "namespace": self.namespace, "labels": get_labels(component)}
        metadata.update(extra)
        return metadata

    @staticmethod
    def _volume_mounts(mounts: Sequence[VolumeMount]) -> List[Dict[str, str]]:
        return [{"name": mount.name, "mountPath": mount.mount_path} for mount in mounts]

    @staticmethod
    def _volumes(mounts: Sequence[VolumeMount]) -> List[Dict[str, Any]]:
        return [{"name": mount.name, "persistentVolumeClaim": {"claimName": mount.name}} for mount in mounts]

    def pod(self, name: str, image: str, pull_policy: str, script: str, mounts: Sequence[VolumeMount]):
        return {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": self._metadata(name),
            "spec": {
                "containers": [
                    {
                        "name": "runner",
                        "image": image,
                        "imagePullPolicy": pull_policy,
                        "command": ["sh", "-c", script],
                        "volumeMounts": self._volume_mounts(mounts),
                    }
                ],
                "volumes": self._volumes(mounts),
                "restartPolicy": "Never",
            },
        }

    def job(self, descriptor: JobDescriptor) -> Dict[str, Any]:
        pod_spec = self.pod(
            descriptor.name,
            descriptor.image,
            descriptor.pull_policy,
            descriptor.script,
            descriptor.mounts,
        )["spec"]
        return {
            "apiVersion": "batch/v1",
            "kind": "Job",
            "metadata": self._metadata(descriptor.name, SERVER_COMPONENT),
            "spec": {"template": {"spec": pod_spec}, "backoffLimit": 0},
        }

    def migration_job(self, descriptor: JobDescriptor) -> Dict[str, Any]:
        """A job with the SSH key, known hosts and config mounted in /root/.ssh."""
        job = self.job(descriptor)
        pod_spec = job["spec"]["template"]["spec"]
        pod_spec["containers"][0]["volumeMounts"].extend(
            [
                {"name": "ssh-key", "mountPath": "/root/.ssh/key", "subPath": "key", "readOnly": True},
                {"name": "ssh-conf", "mountPath": "/root/.ssh/known_hosts", "subPath": "known_hosts"},
                {"name": "ssh-conf", "mountPath": "/root/.ssh/config", "subPath": "config"},
            ]
        )
        pod_spec["volumes"].extend(
            [
                {"name": "ssh-key", "secret": {"secretName": SSH_SECRET_NAME, "defaultMode": 0o600}},
                {"name": "ssh-conf", "configMap": {"name": SSH_CONFIGMAP_NAME}},
            ]
        )
        return job

    def persistent_volume_claims(self, mounts: Sequence[VolumeMount]) -> List[Dict[str, Any]]:
        claims = []
        for mount in mounts:
            spec: Dict[str, Any] = {
                "accessModes": ["ReadWriteOnce"],
                "resources": {"requests": {"storage": mount.size or self.DEFAULT_VOLUME_SIZE}},
            }
            if mount.storage_class:
                spec["storageClassName"] = mount.storage_class
            claims.append(
                {
                    "apiVersion": "v1",
                    "kind": "PersistentVolumeClaim",
                    "metadata": self._metadata(mount.name),
                    "spec": spec,
                }
            )
        return claims

    def server_deployment(
        self,
        image: str,
        pull_policy: str,
        timezone: str,
        debug: bool,
        mounts: Sequence[VolumeMount],
        mirror_volume: str = "",
        pull_secret: str = "",
    ) -> Dict[str, Any]:
        volume_mounts = self._volume_mounts(mounts)
        volumes = self._volumes(mounts)
        volume_mounts.append(
            {
                "name": "ca-cert",
                "mountPath": "/etc/pki/trust/anchors/LOCAL-RHN-ORG-TRUSTED-SSL-CERT",
                "subPath": "ca.crt",
                "readOnly": True,
            }
        )
        volumes.append({"name": "ca-cert", "configMap": {"name": CA_CONFIGMAP_NAME, "optional": True}})
        if mirror_volume:
            volume_mounts.append({"name": "mirror", "mountPath": "/mirror"})
            volumes.append({"name": "mirror", "persistentVolumeClaim": {"claimName": mirror_volume}})

        env = [{"name": "TZ", "value": timezone}]
        if debug:
            env.append(
                {
                    "name": "JAVA_TOOL_OPTIONS",
                    "value": "-agentlib:jdwp=transport=dt_socket,server=y,suspend=n",
                }
            )

        ports = [
            {"containerPort": port.port, "name": port.name, "protocol": port.protocol.upper()}
            for port in get_server_ports(debug)
        ]
        return self._deployment(
            SERVER_DEPLOY_NAME,
            SERVER_COMPONENT,
            1,
            {
                "name": SERVER_DEPLOY_NAME,
                "image": image,
                "imagePullPolicy": pull_policy,
                "ports": ports,
                "env": env,
                "volumeMounts": volume_mounts,
            },
            volumes=volumes,
            strategy={"type": "Recreate"},
            pull_secret=pull_secret,
        )

    def _deployment(
        self,
        name: str,
        component: str,
        replicas: int,
        container: Dict[str, Any],
        volumes: Optional[List[Dict[str, Any]]] = None,
        strategy: Optional[Dict[str, Any]] = None,
        pull_secret: str = "",
    ) -> Dict[str, Any]:
        pod_spec: Dict[str, Any] = {"containers": [container]}
        if volumes:
            pod_spec["volumes"] = volumes
        if pull_secret:
            pod_spec["imagePullSecrets"] = [{"name": pull_secret}]
        spec: Dict[str, Any] = {
            "replicas": replicas,
            "selector": {"matchLabels": get_labels(component)},
            "template": {"metadata": {"labels": get_labels(component)}, "spec": pod_spec},
        }
        if strategy:
            spec["strategy"] = strategy
        return {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": self._metadata(name, component),
            "spec": spec,
        }

    def services(self, ports: Sequence[PortMap], component: str = SERVER_COMPONENT) -> List[Dict[str, Any]]:
        grouped: Dict[str, List[PortMap]] = {}
        for port in ports:
            grouped.setdefault(port.service, []).append(port)

        services = []
        for name, service_ports in grouped.items():
            services.append(
                {
                    "apiVersion": "v1",
                    "kind": "Service",
                    "metadata": self._metadata(name, component),
                    "spec": {
                        "selector": get_labels(component),
                        "ports": [
                            {
                                "name": port.name,
                                "port": port.exposed,
                                "targetPort": port.port,
                                "protocol": port.protocol.upper(),
                            }
                            for port in service_ports
                        ],
                    },
                }
            )
        return services

    @staticmethod
    def _web_rule(fqdn: str, paths: Sequence[str] = ("/",)) -> Dict[str, Any]:
        backend = {"service": {"name": WEB_SERVICE_NAME, "port": {"number": 80}}}
        return {
            "host": fqdn,
            "http": {"paths": [{"backend": backend, "path": path, "pathType": "Prefix"} for path in paths]},
        }

    def _ingress(self, name: str, fqdn: str, annotations: Dict[str, str], rule, tls: bool):
        spec: Dict[str, Any] = {"rules": [rule]}
        if tls:
            spec["tls"] = [{"hosts": [fqdn], "secretName": CERT_SECRET_NAME}]
        return {
            "apiVersion": "networking.k8s.io/v1",
            "kind": "Ingress",
            "metadata": self._metadata(name, annotations=annotations),
            "spec": spec,
        }

    def ingresses(self, fqdn: str, ca_issuer: str, ingress: str) -> List[Dict[str, Any]]:
        ssl_annotations: Dict[str, str] = {}
        if ca_issuer:
            ssl_annotations["cert-manager.io/issuer"] = ca_issuer
        if ingress == "traefik":
            ssl_annotations["traefik.ingress.kubernetes.io/router.tls"] = "true"
            ssl_annotations["traefik.ingress.kubernetes.io/router.tls.domains.n.main"] = fqdn
            ssl_annotations["traefik.ingress.kubernetes.io/router.entrypoints"] = "websecure,web"

        no_ssl_annotations: Dict[str, str] = {}
        if ingress == "nginx":
            no_ssl_annotations["nginx.ingress.kubernetes.io/ssl-redirect"] = "false"
        if ingress == "traefik":
            no_ssl_annotations["traefik.ingress.kubernetes.io/router.tls"] = "false"
            no_ssl_annotations["traefik.ingress.kubernetes.io/router.entrypoints"] = "web"

        ingresses = [
            self._ingress("uyuni-ingress-ssl", fqdn, ssl_annotations, self._web_rule(fqdn), tls=True),
            self._ingress(
                "uyuni-ingress-nossl",
                fqdn,
                no_ssl_annotations,
                self._web_rule(fqdn, NO_SSL_PATHS),
                tls=True,
            ),
        ]

        # Nginx redirects to SSL without a dedicated ingress.
        if ingress == "traefik":
            redirect_annotations = {
                "traefik.ingress.kubernetes.io/router.middlewares": (
                    f"{self.namespace}-{HTTPS_REDIRECT_MIDDLEWARE}@kubernetescrd"
                ),
                "traefik.ingress.kubernetes.io/router.entrypoints": "web",
            }
            ingresses.append(
                self._ingress(
                    "uyuni-ingress-ssl-redirect",
                    fqdn,
                    redirect_annotations,
                    self._web_rule(fqdn),
                    tls=False,
                )
            )
        return ingresses

    def traefik_routes(self, ports: Sequence[PortMap]) -> List[Dict[str, Any]]:
        routes: List[Dict[str, Any]] = [
            {
                "apiVersion": "traefik.containo.us/v1alpha1",
                "kind": "Middleware",
                "metadata": self._metadata(HTTPS_REDIRECT_MIDDLEWARE),
                "spec": {"redirectScheme": {"scheme": "https", "permanent": True}},
            }
        ]
        for port in ports:
            if port.service == WEB_SERVICE_NAME:
                continue
            kind = "IngressRouteUDP" if port.protocol == "udp" else "IngressRouteTCP"
            route: Dict[str, Any] = {"services": [{"name": port.service, "port": port.exposed}]}
            if kind == "IngressRouteTCP":
                route["match"] = "HostSNI(`*`)"
            routes.append(
                {
                    "apiVersion": "traefik.containo.us/v1alpha1",
                    "kind": kind,
                    "metadata": self._metadata(f"{port.service}-{port.name}-route"),
                    "spec": {"entryPoints": [f"{port.service}-{port.name}"], "routes": [route]},
                }
            )
        return routes

    @staticmethod
    def _helm_chart_config(name: str, values: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "apiVersion": "helm.cattle.io/v1",
            "kind": "HelmChartConfig",
            "metadata": {"name": name, "namespace": NODE_CONFIG_NAMESPACE},
            "spec": {"valuesContent": yaml.safe_dump(values, sort_keys=False)},
        }

    def node_config(self, ingress: str, ports: Sequence[PortMap]) -> List[Dict[str, Any]]:
        """Opens the TCP and UDP ports on the node through the bundled ingress controller.

        Traefik gets one entry point per port, named like the routes reference
        them. Nginx maps each exposed port to the namespaced service.
        """
        node_ports = [port for port in ports if port.service != WEB_SERVICE_NAME]

        if ingress == "traefik":
            entry_points = {
                f"{port.service}-{port.name}": {
                    "port": port.port,
                    "expose": {"default": True},
                    "exposedPort": port.exposed,
                    "protocol": port.protocol.upper(),
                }
                for port in node_ports
            }
            return [self._helm_chart_config("traefik", {"ports": entry_points})]

        if ingress == "nginx":
            values: Dict[str, Any] = {"controller": {"config": {"hsts": "false"}}, "tcp": {}, "udp": {}}
            for port in node_ports:
                protocol = "udp" if port.protocol == "udp" else "tcp"
                values[protocol][str(port.exposed)] = f"{self.namespace}/{port.service}:{port.exposed}"
            return [self._helm_chart_config("rke2-ingress-nginx", values)]

        return []

    def scc_pull_secret(self, user: str, password: str) -> Dict[str, Any]:
        auth = base64.b64encode(f"{user}:{password}".encode("utf-8")).decode("ascii")
        config = {"auths": {SCC_REGISTRY: {"username": user, "password": password, "auth": auth}}}
        return {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": "kubernetes.io/dockerconfigjson",
            "metadata": self._metadata(SCC_SECRET_NAME),
            "data": {".dockerconfigjson": _b64(json.dumps(config))},
        }

    def tls_secret(self, name: str, cert: str, key: str, ca_cert: str = "") -> Dict[str, Any]:
        data = {"tls.crt": _b64(cert), "tls.key": _b64(key)}
        if ca_cert:
            data["ca.crt"] = _b64(ca_cert)
        return {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": "kubernetes.io/tls",
            "metadata": self._metadata(name),
            "data": data,
        }

    def db_secret(self, user: str, password: str) -> Dict[str, Any]:
        return {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": "kubernetes.io/basic-auth",
            "metadata": self._metadata(DB_SECRET_NAME),
            "data": {"username": _b64(user), "password": _b64(password)},
        }

    def ca_config_map(self, ca_cert: str) -> Dict[str, Any]:
        return {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": self._metadata(CA_CONFIGMAP_NAME),
            "data": {"ca.crt": ca_cert},
        }

    def ssh_resources(self, private_key: str, public_key: str, known_hosts: str, config: str):
        secret = {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": self._metadata(SSH_SECRET_NAME),
            "data": {"key": _b64(private_key), "key.pub": _b64(public_key)},
        }
        config_map = {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": self._metadata(SSH_CONFIGMAP_NAME),
            "data": {"known_hosts": known_hosts, "config": config},
        }
        return [secret, config_map]

    def _issuer(self, name: str, spec: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "apiVersion": "cert-manager.io/v1",
            "kind": "Issuer",
            "metadata": self._metadata(name),
            "spec": spec,
        }

    def reused_ca_issuer(self, ca_key_b64: str, ca_cert_b64: str) -> List[Dict[str, Any]]:
        secret = {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": "kubernetes.io/tls",
            "metadata": self._metadata(CA_SECRET_NAME),
            "data": {"ca.crt": ca_cert_b64, "tls.crt": ca_cert_b64, "tls.key": ca_key_b64},
        }
        return [secret, self._issuer(CA_ISSUER_NAME, {"ca": {"secretName": CA_SECRET_NAME}})]

    def generated_ca_issuer(
        self,
        fqdn: str,
        country: str,
        state: str,
        city: str,
        org: str,
        ou: str,
        email: str = "",
        cnames: Sequence[str] = (),
    ) -> List[Dict[str, Any]]:
        subject = {
            "countries": [country],
            "provinces": [state],
            "localities": [city],
            "organizations": [org],
            "organizationalUnits": [ou],
        }
        ca_certificate: Dict[str, Any] = {
            "apiVersion": "cert-manager.io/v1",
            "kind": "Certificate",
            "metadata": self._metadata(CA_CERTIFICATE_NAME),
            "spec": {
                "isCA": True,
                "commonName": fqdn,
                "dnsNames": [fqdn, *cnames],
                "subject": subject,
                "secretName": CA_SECRET_NAME,
                "privateKey": {"algorithm": "ECDSA", "size": 256},
                "issuerRef": {"name": SELF_SIGNED_ISSUER_NAME, "kind": "Issuer", "group": "cert-manager.io"},
            },
        }
        if email:
            ca_certificate["spec"]["emailAddresses"] = [email]
        return [
            self._issuer(SELF_SIGNED_ISSUER_NAME, {"selfSigned": {}}),
            ca_certificate,
            self._issuer(CA_ISSUER_NAME, {"ca": {"secretName": CA_SECRET_NAME}}),
        ]

    def coco_deployment(self, image: str, pull_policy: str, replicas: int, db_port: int, db_name: str):
        container = {
            "name": COCO_DEPLOY_NAME,
            "image": image,
            "imagePullPolicy": pull_policy,
            "env": [
                {
                    "name": "database_connection",
                    "value": f"jdbc:postgresql://{TCP_SERVICE_NAME}:{db_port}/{db_name}",
                },
                {
                    "name": "database_user",
                    "valueFrom": {"secretKeyRef": {"name": DB_SECRET_NAME, "key": "username"}},
                },
                {
                    "name": "database_password",
                    "valueFrom": {"secretKeyRef": {"name": DB_SECRET_NAME, "key": "password"}},
                },
            ],
        }
        return self._deployment(COCO_DEPLOY_NAME, COCO_COMPONENT, replicas, container)

    def hub_api_deployment(self, image: str, pull_policy: str, replicas: int):
        container = {
            "name": HUB_API_DEPLOY_NAME,
            "image": image,
            "imagePullPolicy": pull_policy,
            "ports": [{"containerPort": port.port} for port in HUB_API_PORTS],
            "env": [
                {"name": "HUB_API_URL", "value": f"http://{WEB_SERVICE_NAME}/rpc/api"},
                {"name": "HUB_CONNECT_TIMEOUT", "value": "10"},
                {"name": "HUB_REQUEST_TIMEOUT", "value": "10"},
                {"name": "HUB_CONNECT_USING_SSL", "value": "false"},
            ],
        }
        return self._deployment(HUB_API_DEPLOY_NAME, HUB_API_COMPONENT, replicas, container)
