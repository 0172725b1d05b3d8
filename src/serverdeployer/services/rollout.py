"""Workload rollout for ServerDeployer."""

from typing import List, Sequence

from serverdeployer.constants import (
    CERT_SECRET_NAME,
    COCO_DEPLOY_NAME,
    HUB_API_COMPONENT,
    HUB_API_DEPLOY_NAME,
    SECRET_TIMEOUT,
    SERVER_DEPLOY_NAME,
)
from serverdeployer.errors import WaitTimeoutError
from serverdeployer.models import (
    DeploymentTarget,
    EffectiveConfiguration,
    ImageConfig,
    SccConfig,
    ServerConfig,
    VolumeMount,
)
from serverdeployer.services.images import compute_image
from serverdeployer.services.manifests import HUB_API_PORTS, ManifestBuilder, get_server_ports


class WorkloadRolloutManager:
    """Creates volumes, routes, deployments and services of the server."""

    def __init__(self, client, logger, console, secret_timeout: int = SECRET_TIMEOUT):
        self.client = client
        self.logger = logger
        self.console = console
        self.secret_timeout = secret_timeout

    def ensure_volumes(self, namespace: str, mounts: Sequence[VolumeMount]):
        """Creates the missing claims; existing ones are left untouched."""
        missing = [mount for mount in mounts if not self.client.exists("pvc", namespace, mount.name)]
        if not missing:
            self.logger.info("All persistent volume claims already exist.")
            return

        self.console.print(f"[blue]Creating {len(missing)} persistent volume claims...[/blue]")
        claims = ManifestBuilder(namespace).persistent_volume_claims(missing)
        self.client.apply(claims, "failed to create the persistent volume claims")

    def deploy_node_config(self, namespace: str, ingress: str, effective: EffectiveConfiguration):
        ports = get_server_ports(effective.debug)
        if effective.hub_api_replicas > 0:
            ports = ports + HUB_API_PORTS
        objects = ManifestBuilder(namespace).node_config(ingress, ports)
        if not objects:
            self.logger.warning("No node configuration for ingress controller '%s'.", ingress)
            return
        self.console.print(f"[blue]Configuring the {ingress} node ports...[/blue]")
        self.client.apply(objects, f"failed to configure the {ingress} ports")

    def create_pull_secret(self, namespace: str, scc: SccConfig) -> str:
        """Returns the pull secret name, or an empty string without SCC credentials."""
        if not (scc.user and scc.password):
            return ""
        secret = ManifestBuilder(namespace).scc_pull_secret(scc.user, scc.password)
        self.client.apply([secret], "failed to create the SCC pull secret")
        return secret["metadata"]["name"]

    def create_ingress(self, target: DeploymentTarget, ca_issuer: str, ingress: str):
        self.console.print("[blue]Creating the ingress routes...[/blue]")
        objects = ManifestBuilder(target.namespace).ingresses(target.fqdn, ca_issuer, ingress)
        self.client.apply(objects, "failed to create the ingress routes")

    def wait_for_cert_secret(self, namespace: str):
        """Best-effort wait: some ingress controllers create the secret later."""
        try:
            self.client.wait_for_secret(namespace, CERT_SECRET_NAME, self.secret_timeout)
        except WaitTimeoutError as exc:
            self.logger.warning("Continuing without the %s secret: %s", CERT_SECRET_NAME, exc)

    def deploy_server(
        self,
        namespace: str,
        image: str,
        pull_policy: str,
        effective: EffectiveConfiguration,
        mounts: Sequence[VolumeMount],
        mirror_volume: str,
        ingress: str,
        pull_secret: str = "",
    ):
        self.console.print(f"[blue]Deploying {image}...[/blue]")
        builder = ManifestBuilder(namespace)
        deployment = builder.server_deployment(
            image,
            pull_policy,
            effective.timezone,
            effective.debug,
            mounts,
            mirror_volume=mirror_volume,
            pull_secret=pull_secret,
        )
        ports = get_server_ports(effective.debug)
        self.client.apply([deployment, *builder.services(ports)], "failed to create the server deployment")

        if ingress == "traefik":
            if effective.hub_api_replicas > 0:
                ports = ports + HUB_API_PORTS
            self.client.apply(builder.traefik_routes(ports), "failed to create the traefik routes")

    def rollout(
        self,
        target: DeploymentTarget,
        ca_issuer: str,
        ingress: str,
        image: str,
        pull_policy: str,
        effective: EffectiveConfiguration,
        mounts: Sequence[VolumeMount],
        mirror_volume: str = "",
        scc: SccConfig = SccConfig(),
    ):
        """Runs the rollout up to a server pod ready to be set up.

        The ingress routes come first: they carry the TLS reference that makes
        cert-manager issue the server certificate.
        """
        self.deploy_node_config(target.namespace, ingress, effective)
        self.create_ingress(target, ca_issuer, ingress)
        self.wait_for_cert_secret(target.namespace)
        pull_secret = self.create_pull_secret(target.namespace, scc)
        self.deploy_server(
            target.namespace, image, pull_policy, effective, mounts, mirror_volume, ingress, pull_secret
        )
        self.console.print("[blue]Waiting for the server to start...[/blue]")
        self.client.wait_for_running_deployment(target.namespace, SERVER_DEPLOY_NAME)

    def start_side_services(
        self, namespace: str, config: ServerConfig, effective: EffectiveConfiguration
    ) -> List[str]:
        """Starts coco and hub API deployments when they have replicas, returns their names."""
        builder = ManifestBuilder(namespace)
        started = []
        pull_policy = config.image.pull_policy

        if effective.coco_replicas > 0:
            image = compute_image(
                config.image.registry, ImageConfig(name=config.coco.image_name), config.image.tag
            )
            self.console.print(f"[blue]Starting {effective.coco_replicas} coco replicas...[/blue]")
            deployment = builder.coco_deployment(
                image, pull_policy, effective.coco_replicas, effective.db_port, effective.db_name
            )
            self.client.apply([deployment], "failed to create the coco deployment")
            started.append(COCO_DEPLOY_NAME)

        if effective.hub_api_replicas > 0:
            image = compute_image(
                config.image.registry, ImageConfig(name=config.hub_api.image_name), config.image.tag
            )
            self.console.print("[blue]Starting the hub API...[/blue]")
            objects = [
                builder.hub_api_deployment(image, pull_policy, effective.hub_api_replicas),
                *builder.services(HUB_API_PORTS, HUB_API_COMPONENT),
            ]
            self.client.apply(objects, "failed to create the hub API deployment")
            started.append(HUB_API_DEPLOY_NAME)

        return started
