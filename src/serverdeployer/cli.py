import logging
import os

import click
from rich.console import Console
from rich.logging import RichHandler

from .core import DeployerError, ServerDeployer
from .models import (
    AdminConfig,
    DbConfig,
    DeploymentTarget,
    HelmConfig,
    ImageConfig,
    ServerConfig,
    SccConfig,
    SideServiceConfig,
    SshConfig,
    SslConfig,
    VolumeSettings,
    VolumesConfig,
)
from .services.config_loader import DEFAULT_CONFIG_FILE, ConfigLoader

DEFAULT_REGISTRY = "registry.opensuse.org/uyuni"
DEFAULT_IMAGE = "server"
DEFAULT_NAMESPACE = "default"


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None and cli_value != ():
        return cli_value
    if key in config:
        return config[key]
    return default


def _pick(values, key, default):
    value = values.get(key)
    return default if value is None else value


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=Console(stderr=True), rich_tracebacks=True, show_level=False, show_path=False
        )
    ],
)


def _volume_settings(values, name: str, default: VolumeSettings) -> VolumeSettings:
    return VolumeSettings(
        size=str(_pick(values, f"volumes_{name}_size", default.size)),
        storage_class=str(_pick(values, f"volumes_{name}_class", default.storage_class)),
    )


def build_server_config(values) -> ServerConfig:
    """Turns the merged CLI and file values into the immutable configuration."""
    tag = str(_pick(values, "tag", "latest"))
    pull_policy = _pick(values, "pull_policy", "IfNotPresent")
    registry = _pick(values, "registry", DEFAULT_REGISTRY)
    image = ImageConfig(
        name=_pick(values, "image", DEFAULT_IMAGE), tag=tag, registry=registry, pull_policy=pull_policy
    )

    db_upgrade_image = None
    if values.get("db_upgrade_image"):
        db_upgrade_image = ImageConfig(
            name=values["db_upgrade_image"], tag=tag, registry=registry, pull_policy=pull_policy
        )

    ssl_defaults = SslConfig()
    cnames = values.get("ssl_cnames") or ()
    if isinstance(cnames, str):
        cnames = (cnames,)
    ssl = SslConfig(
        cnames=tuple(cnames),
        country=_pick(values, "ssl_country", ssl_defaults.country),
        state=_pick(values, "ssl_state", ssl_defaults.state),
        city=_pick(values, "ssl_city", ssl_defaults.city),
        org=_pick(values, "ssl_org", ssl_defaults.org),
        ou=_pick(values, "ssl_ou", ssl_defaults.ou),
        email=_pick(values, "ssl_email", ""),
        password=_pick(values, "ssl_password", ""),
        ca_root=_pick(values, "ssl_ca_root", ""),
        ca_key=_pick(values, "ssl_ca_key", ""),
        server_cert=_pick(values, "ssl_server_cert", ""),
        server_key=_pick(values, "ssl_server_key", ""),
    )

    db_defaults = DbConfig()
    try:
        db_port = int(_pick(values, "db_port", db_defaults.port))
        coco_replicas = int(_pick(values, "coco_replicas", 0))
        hub_api_replicas = int(_pick(values, "hub_api_replicas", 0))
    except (TypeError, ValueError) as exc:
        raise DeployerError(f"Invalid numeric configuration value: {exc}") from exc

    db = DbConfig(
        user=_pick(values, "db_user", ""),
        password=_pick(values, "db_password", ""),
        name=_pick(values, "db_name", db_defaults.name),
        host=_pick(values, "db_host", db_defaults.host),
        port=db_port,
    )

    admin_defaults = AdminConfig()
    admin = AdminConfig(
        login=_pick(values, "admin_login", admin_defaults.login),
        password=_pick(values, "admin_password", ""),
        first_name=_pick(values, "admin_first_name", admin_defaults.first_name),
        last_name=_pick(values, "admin_last_name", admin_defaults.last_name),
        email=_pick(values, "admin_email", ""),
        organization=_pick(values, "admin_organization", admin_defaults.organization),
    )

    volume_defaults = VolumesConfig()
    volumes = VolumesConfig(
        storage_class=_pick(values, "volumes_class", ""),
        database=_volume_settings(values, "database", volume_defaults.database),
        packages=_volume_settings(values, "packages", volume_defaults.packages),
        www=_volume_settings(values, "www", volume_defaults.www),
        cache=_volume_settings(values, "cache", volume_defaults.cache),
        mirror=_pick(values, "volumes_mirror", ""),
    )

    server_defaults = ServerConfig(image=image)
    helm_defaults = HelmConfig()
    return ServerConfig(
        image=image,
        db_upgrade_image=db_upgrade_image,
        ssl=ssl,
        db=db,
        admin=admin,
        volumes=volumes,
        coco=SideServiceConfig(
            replicas=coco_replicas,
            image_name=_pick(values, "coco_image", server_defaults.coco.image_name),
        ),
        hub_api=SideServiceConfig(
            replicas=hub_api_replicas,
            image_name=_pick(values, "hub_api_image", server_defaults.hub_api.image_name),
        ),
        helm=HelmConfig(
            namespace=_pick(values, "namespace", DEFAULT_NAMESPACE),
            cert_manager_namespace=_pick(
                values, "cert_manager_namespace", helm_defaults.cert_manager_namespace
            ),
            cert_manager_chart=_pick(values, "cert_manager_chart", helm_defaults.cert_manager_chart),
            cert_manager_version=_pick(values, "cert_manager_version", ""),
            cert_manager_values=_pick(values, "cert_manager_values", ""),
        ),
        ssh=SshConfig(
            private_key=_pick(values, "ssh_key_private", ""),
            public_key=_pick(values, "ssh_key_public", ""),
            known_hosts=_pick(values, "ssh_knownhosts", ""),
            config=_pick(values, "ssh_config", ""),
        ),
        scc=SccConfig(
            user=_pick(values, "scc_user", ""),
            password=_pick(values, "scc_password", ""),
        ),
        timezone=_pick(values, "timezone", server_defaults.timezone),
        email_from=_pick(values, "email_from", ""),
        debug=bool(_pick(values, "debug", False)),
        migration_user=_pick(values, "user", server_defaults.migration_user),
        migration_prepare=bool(_pick(values, "prepare", False)),
    )


_SHARED_OPTIONS = [
    click.option(
        "--config",
        required=False,
        type=click.Path(),
        help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
    ),
    click.option("--namespace", help="Kubernetes namespace to deploy to (default: default)."),
    click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging"),
    click.option("--log-file", type=click.Path(), help="Path to log file"),
    click.option("--report-file", type=click.Path(), help="Write a JSON run report to this path."),
    click.option("--image", help=f"Server image name (default: {DEFAULT_IMAGE})."),
    click.option("--registry", help=f"Image registry (default: {DEFAULT_REGISTRY})."),
    click.option("--tag", help="Image tag (default: latest)."),
    click.option(
        "--pull-policy",
        type=click.Choice(["Always", "IfNotPresent", "Never"]),
        help="Image pull policy (default: IfNotPresent).",
    ),
    click.option(
        "--db-upgrade-image",
        help="Database upgrade image name. Defaults to the server image with a migration suffix.",
    ),
    click.option("--timezone", help="Time zone of the server (default: Etc/UTC)."),
    click.option("--email-from", help="Sender address of the notification emails."),
    click.option("--debug", is_flag=True, default=None, help="Enable Java remote debugging ports."),
    click.option("--ssl-cname", "ssl_cnames", multiple=True, help="SSL certificate alias, repeatable."),
    click.option("--ssl-country", help="SSL certificate country."),
    click.option("--ssl-state", help="SSL certificate state."),
    click.option("--ssl-city", help="SSL certificate city."),
    click.option("--ssl-org", help="SSL certificate organization."),
    click.option("--ssl-ou", help="SSL certificate organization unit."),
    click.option("--ssl-email", help="SSL certificate email."),
    click.option("--ssl-password", help="Password of the CA private key."),
    click.option("--ssl-ca-root", type=click.Path(), help="Path to the CA certificate file."),
    click.option("--ssl-ca-key", type=click.Path(), help="Path to the CA private key file."),
    click.option("--ssl-server-cert", type=click.Path(), help="Path to the server certificate file."),
    click.option("--ssl-server-key", type=click.Path(), help="Path to the server private key file."),
    click.option("--db-user", help="Database user."),
    click.option("--db-password", help="Database password."),
    click.option("--db-name", help="Database name (default: susemanager)."),
    click.option("--db-host", help="Database host (default: localhost)."),
    click.option("--db-port", type=int, help="Database port (default: 5432)."),
    click.option("--admin-login", help="Administrator login."),
    click.option("--admin-password", help="Administrator password."),
    click.option("--admin-first-name", help="Administrator first name."),
    click.option("--admin-last-name", help="Administrator last name."),
    click.option("--admin-email", help="Administrator email."),
    click.option("--admin-organization", help="First organization name."),
    click.option("--volumes-class", help="Default storage class of the volumes."),
    click.option("--volumes-database-size", help="Size of the database volume."),
    click.option("--volumes-database-class", help="Storage class of the database volume."),
    click.option("--volumes-packages-size", help="Size of the packages volume."),
    click.option("--volumes-packages-class", help="Storage class of the packages volume."),
    click.option("--volumes-www-size", help="Size of the www volume."),
    click.option("--volumes-www-class", help="Storage class of the www volume."),
    click.option("--volumes-cache-size", help="Size of the cache volume."),
    click.option("--volumes-cache-class", help="Storage class of the cache volume."),
    click.option("--volumes-mirror", help="Existing claim to mount as the mirror volume."),
    click.option("--coco-replicas", type=int, help="Confidential computing attestation replicas."),
    click.option("--coco-image", help="Confidential computing attestation image name."),
    click.option("--hub-api-replicas", type=int, help="Hub XML-RPC API replicas."),
    click.option("--hub-api-image", help="Hub XML-RPC API image name."),
    click.option("--cert-manager-namespace", help="Namespace to install cert-manager to."),
    click.option("--cert-manager-chart", help="cert-manager helm chart URL."),
    click.option("--cert-manager-version", help="cert-manager helm chart version."),
    click.option("--cert-manager-values", type=click.Path(), help="cert-manager helm values file."),
    click.option("--scc-user", help="SUSE Customer Center user to pull images with."),
    click.option("--scc-password", help="SUSE Customer Center password to pull images with."),
]

_MIGRATION_OPTIONS = [
    click.option("--ssh-key-private", type=click.Path(), help="SSH private key for the source host."),
    click.option("--ssh-key-public", type=click.Path(), help="SSH public key for the source host."),
    click.option("--ssh-knownhosts", type=click.Path(), help="SSH known hosts file."),
    click.option("--ssh-config", type=click.Path(), help="SSH client configuration file."),
    click.option("--user", help="User to connect to the source host with (default: root)."),
    click.option("--prepare", is_flag=True, default=None, help="Only synchronize the data, do not deploy."),
]


def _with_options(options):
    def decorator(func):
        for option in reversed(options):
            func = option(func)
        return func

    return decorator


def _configure_logging(verbose: bool, log_file):
    logger = logging.getLogger("serverdeployer")
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)


def _execute(action: str, fqdn, options):
    try:
        resolved_config = options.pop("config", None)
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
            if os.path.exists(default_config_path):
                resolved_config = default_config_path

        config_values = ConfigLoader().load(resolved_config)
    except DeployerError as exc:
        raise click.ClickException(str(exc)) from exc

    values = dict(config_values)
    for key, cli_value in options.items():
        values[key] = _resolve_option(cli_value, config_values, key)

    _configure_logging(bool(values.get("verbose")), values.get("log_file"))

    try:
        server_config = build_server_config(values)
        target = DeploymentTarget(namespace=server_config.helm.namespace, fqdn=fqdn or "")
        deployer = ServerDeployer(
            target=target,
            config=server_config,
            report_file=values.get("report_file"),
        )
    except DeployerError as exc:
        raise click.ClickException(str(exc)) from exc

    raise SystemExit(deployer.run(action))


@click.group()
def main():
    """Deploy, upgrade and migrate the server on a Kubernetes cluster."""


@main.command()
@click.argument("fqdn")
@_with_options(_SHARED_OPTIONS)
def install(fqdn, **options):
    """Install a new server reachable as FQDN."""
    _execute("install", fqdn, options)


@main.command()
@click.argument("fqdn", required=False)
@_with_options(_SHARED_OPTIONS)
def upgrade(fqdn, **options):
    """Upgrade the server deployed in the namespace."""
    _execute("upgrade", fqdn, options)


@main.command()
@click.argument("source_fqdn")
@_with_options(_SHARED_OPTIONS + _MIGRATION_OPTIONS)
def migrate(source_fqdn, **options):
    """Migrate the server running on SOURCE_FQDN to the cluster."""
    _execute("migrate", source_fqdn, options)


if __name__ == "__main__":
    main()
