"""Shared domain models for ServerDeployer."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union


@dataclass(frozen=True)
class DeploymentTarget:
    """Namespace and domain name under configuration for one invocation."""

    namespace: str
    fqdn: str


@dataclass(frozen=True)
class VolumeMount:
    name: str
    mount_path: str
    size: str = ""
    storage_class: str = ""


@dataclass(frozen=True)
class PortMap:
    service: str
    name: str
    exposed: int
    port: int
    protocol: str = "tcp"


@dataclass(frozen=True)
class ImageConfig:
    name: str
    tag: str = "latest"
    registry: str = ""
    pull_policy: str = "IfNotPresent"


@dataclass(frozen=True)
class SslConfig:
    """Certificate subject fields and paths to user-provided PEM files."""

    cnames: Tuple[str, ...] = ()
    country: str = "DE"
    state: str = "Bayern"
    city: str = "Nuernberg"
    org: str = "SUSE"
    ou: str = "SUSE"
    email: str = ""
    password: str = ""
    ca_root: str = ""
    ca_key: str = ""
    server_cert: str = ""
    server_key: str = ""


@dataclass(frozen=True)
class DbConfig:
    user: str = ""
    password: str = ""
    name: str = "susemanager"
    host: str = "localhost"
    port: int = 5432


@dataclass(frozen=True)
class AdminConfig:
    login: str = "admin"
    password: str = ""
    first_name: str = "Administrator"
    last_name: str = "McAdmin"
    email: str = ""
    organization: str = "Organization"


@dataclass(frozen=True)
class VolumeSettings:
    size: str = ""
    storage_class: str = ""


@dataclass(frozen=True)
class VolumesConfig:
    """Persistent volume claims tuning. An empty mirror means no mirror volume."""

    storage_class: str = ""
    database: VolumeSettings = VolumeSettings(size="50Gi")
    packages: VolumeSettings = VolumeSettings(size="100Gi")
    www: VolumeSettings = VolumeSettings(size="100Gi")
    cache: VolumeSettings = VolumeSettings(size="10Gi")
    mirror: str = ""


@dataclass(frozen=True)
class SideServiceConfig:
    replicas: int = 0
    image_name: str = ""


@dataclass(frozen=True)
class HelmConfig:
    namespace: str = "default"
    cert_manager_namespace: str = "cert-manager"
    cert_manager_chart: str = "oci://quay.io/jetstack/charts/cert-manager"
    cert_manager_version: str = ""
    cert_manager_values: str = ""


@dataclass(frozen=True)
class SshConfig:
    private_key: str = ""
    public_key: str = ""
    known_hosts: str = ""
    config: str = ""


@dataclass(frozen=True)
class SccConfig:
    """Credentials of the SUSE Customer Center registry. Empty means no pull secret."""

    user: str = ""
    password: str = ""


@dataclass(frozen=True)
class ServerConfig:
    """Configuration supplied by the user, never modified after parsing."""

    image: ImageConfig
    db_upgrade_image: Optional[ImageConfig] = None
    ssl: SslConfig = SslConfig()
    db: DbConfig = DbConfig()
    admin: AdminConfig = AdminConfig()
    volumes: VolumesConfig = VolumesConfig()
    coco: SideServiceConfig = SideServiceConfig(image_name="server-attestation")
    hub_api: SideServiceConfig = SideServiceConfig(image_name="server-hub-xmlrpc-api")
    helm: HelmConfig = HelmConfig()
    ssh: SshConfig = SshConfig()
    scc: SccConfig = SccConfig()
    timezone: str = "Etc/UTC"
    email_from: str = ""
    debug: bool = False
    migration_user: str = "root"
    migration_prepare: bool = False


@dataclass(frozen=True)
class InspectedConfiguration:
    """Operational parameters read from an image and the existing volumes."""

    current_pg_version: int
    image_pg_version: int
    server_version: str = ""
    timezone: str = ""
    debug: bool = False
    db_user: str = ""
    db_password: str = ""
    db_name: str = ""
    db_port: int = 5432
    has_hub_api: bool = False
    fqdn: str = ""


@dataclass(frozen=True)
class MigrationPayload:
    data: InspectedConfiguration
    ca_key: str = ""
    ca_cert: str = ""
    server_cert: str = ""
    server_key: str = ""


class VersionTransition(Enum):
    NO_CHANGE = "no-change"
    UPGRADE = "upgrade"
    UNSUPPORTED_DOWNGRADE = "unsupported-downgrade"


@dataclass(frozen=True)
class UseExisting:
    ca_cert: str
    server_cert: str
    server_key: str


@dataclass(frozen=True)
class ReuseMigratedCa:
    key: str
    cert: str
    password: str = ""


@dataclass(frozen=True)
class GenerateNew:
    country: str
    state: str
    city: str
    org: str
    ou: str
    email: str = ""
    cnames: Tuple[str, ...] = ()


CertificateStrategy = Union[UseExisting, ReuseMigratedCa, GenerateNew]


@dataclass(frozen=True)
class JobDescriptor:
    """A named run-to-completion script. A timeout of None waits forever."""

    name: str
    image: str
    script: str
    mounts: Tuple[VolumeMount, ...] = ()
    timeout: Optional[int] = None
    pull_policy: str = "IfNotPresent"


@dataclass(frozen=True)
class ClusterInfo:
    kubelet_version: str
    ingress: str = ""

    def kubeconfig(self) -> str:
        if "k3s" in self.kubelet_version:
            return "/etc/rancher/k3s/k3s.yaml"
        if "rke2" in self.kubelet_version:
            return "/etc/rancher/rke2/rke2.yaml"
        return ""


@dataclass(frozen=True)
class EffectiveConfiguration:
    """Supplied values merged with what was extracted from the cluster."""

    fqdn: str
    timezone: str
    debug: bool
    db_user: str
    db_password: str
    db_name: str
    db_port: int
    hub_api_replicas: int
    coco_replicas: int


def merge_configuration(
    config: ServerConfig,
    fqdn: str,
    inspected: Optional[InspectedConfiguration] = None,
) -> EffectiveConfiguration:
    if inspected is None:
        return EffectiveConfiguration(
            fqdn=fqdn,
            timezone=config.timezone,
            debug=config.debug,
            db_user=config.db.user,
            db_password=config.db.password,
            db_name=config.db.name,
            db_port=config.db.port,
            hub_api_replicas=config.hub_api.replicas,
            coco_replicas=config.coco.replicas,
        )

    hub_api_replicas = config.hub_api.replicas
    if inspected.has_hub_api and hub_api_replicas < 1:
        hub_api_replicas = 1

    return EffectiveConfiguration(
        fqdn=inspected.fqdn or fqdn,
        timezone=inspected.timezone or config.timezone,
        debug=config.debug or inspected.debug,
        db_user=inspected.db_user or config.db.user,
        db_password=inspected.db_password or config.db.password,
        db_name=inspected.db_name or config.db.name,
        db_port=inspected.db_port or config.db.port,
        hub_api_replicas=hub_api_replicas,
        coco_replicas=config.coco.replicas,
    )
