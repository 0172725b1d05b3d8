"""SSL certificate provisioning for ServerDeployer."""

import base64
from pathlib import Path
from typing import Optional

from cryptography.hazmat.primitives import serialization

from serverdeployer.constants import (
    CA_ISSUER_NAME,
    CA_SECRET_NAME,
    CERT_SECRET_NAME,
    ISSUER_TIMEOUT,
)
from serverdeployer.errors import DeployerError, PreconditionError
from serverdeployer.models import (
    CertificateStrategy,
    ClusterInfo,
    DeploymentTarget,
    GenerateNew,
    HelmConfig,
    MigrationPayload,
    ReuseMigratedCa,
    SslConfig,
    UseExisting,
)
from serverdeployer.services.manifests import ManifestBuilder

CERT_BEGIN_MARKER = "-----BEGIN CERTIFICATE-----"
CERT_MANAGER_CRD = "issuers.cert-manager.io"


def _read_pem(path: str, label: str) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise PreconditionError(f"Cannot read {label} file '{path}': {exc}") from exc


def select_certificate_strategy(
    ssl: SslConfig, payload: Optional[MigrationPayload] = None
) -> CertificateStrategy:
    """Picks the certificate source once, from whichever inputs are set.

    A CA key always wins: migrated data first, then the ``--ssl-ca-key`` file.
    Server certificate and key files come next and a brand new CA is
    generated when nothing is provided.
    """
    if payload is not None:
        if payload.ca_key:
            return ReuseMigratedCa(key=payload.ca_key, cert=payload.ca_cert, password=ssl.password)
        if payload.server_cert and payload.server_key:
            return UseExisting(
                ca_cert=payload.ca_cert,
                server_cert=payload.server_cert,
                server_key=payload.server_key,
            )

    if ssl.ca_key:
        return ReuseMigratedCa(
            key=_read_pem(ssl.ca_key, "CA key"),
            cert=_read_pem(ssl.ca_root, "CA certificate") if ssl.ca_root else "",
            password=ssl.password,
        )

    if ssl.server_cert and ssl.server_key:
        return UseExisting(
            ca_cert=_read_pem(ssl.ca_root, "CA certificate") if ssl.ca_root else "",
            server_cert=_read_pem(ssl.server_cert, "server certificate"),
            server_key=_read_pem(ssl.server_key, "server key"),
        )

    return GenerateNew(
        country=ssl.country,
        state=ssl.state,
        city=ssl.city,
        org=ssl.org,
        ou=ssl.ou,
        email=ssl.email,
        cnames=ssl.cnames,
    )


def convert_ca_key(key_pem: str, password: str = "") -> bytes:
    """Decrypts the CA key and re-encodes it as a traditional RSA PEM."""
    data = key_pem.encode("utf-8")
    secret = password.encode("utf-8") if password else None
    try:
        try:
            key = serialization.load_pem_private_key(data, password=secret)
        except TypeError as exc:
            # Raised when a password is given for a plain key, or missing for an encrypted one.
            if secret is None:
                raise DeployerError(
                    "The CA private key is encrypted. Pass its password with `--ssl-password`."
                ) from exc
            key = serialization.load_pem_private_key(data, password=None)
    except (TypeError, ValueError) as exc:
        raise DeployerError(f"Failed to read the CA private key: {exc}") from exc

    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def strip_text_from_certificate(cert: str) -> str:
    """Drops the human readable dump ``openssl x509 -text`` puts before the PEM block."""
    start = cert.find(CERT_BEGIN_MARKER)
    if start < 0:
        raise DeployerError("The CA certificate does not contain a PEM block.")
    return cert[start:]


def _b64(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


class CertificateProvisioner:
    """Installs the server certificate or the issuer that will produce it."""

    def __init__(self, client, helm_client, logger, console, helm: HelmConfig, pull_policy: str):
        self.client = client
        self.helm_client = helm_client
        self.logger = logger
        self.console = console
        self.helm = helm
        self.pull_policy = pull_policy

    def provision(
        self,
        strategy: CertificateStrategy,
        target: DeploymentTarget,
        cluster_info: ClusterInfo,
    ) -> str:
        """Returns the issuer name, or an empty string when a raw secret is used."""
        builder = ManifestBuilder(target.namespace)

        if isinstance(strategy, UseExisting):
            self.console.print("[blue]Installing the provided SSL certificate...[/blue]")
            objects = [
                builder.tls_secret(
                    CERT_SECRET_NAME, strategy.server_cert, strategy.server_key, strategy.ca_cert
                )
            ]
            if strategy.ca_cert:
                objects.append(builder.ca_config_map(strategy.ca_cert))
            self.client.apply(objects, "failed to create the SSL certificate secret")
            return ""

        self.install_cert_manager(cluster_info.kubeconfig())

        if isinstance(strategy, ReuseMigratedCa):
            self.console.print("[blue]Reusing the existing CA...[/blue]")
            ca_key = _b64(convert_ca_key(strategy.key, strategy.password))
            ca_cert = _b64(strip_text_from_certificate(strategy.cert).encode("utf-8"))
            objects = builder.reused_ca_issuer(ca_key, ca_cert)
        else:
            self.console.print("[blue]Generating a new CA...[/blue]")
            objects = builder.generated_ca_issuer(
                target.fqdn,
                country=strategy.country,
                state=strategy.state,
                city=strategy.city,
                org=strategy.org,
                ou=strategy.ou,
                email=strategy.email,
                cnames=strategy.cnames,
            )
        self.client.apply(objects, "failed to create the CA issuer")

        # Certificate requests against an unready issuer are never resolved.
        self.client.wait_for_object_ready("issuer", target.namespace, CA_ISSUER_NAME, ISSUER_TIMEOUT)
        self.extract_ca_cert_to_config(target.namespace)
        return CA_ISSUER_NAME

    def install_cert_manager(self, kubeconfig: str):
        if self.client.exists("crd", None, CERT_MANAGER_CRD):
            self.logger.info("cert-manager is already installed, skipping.")
            return

        self.console.print("[blue]Installing cert-manager...[/blue]")
        try:
            self.helm_client.upgrade_install(
                kubeconfig,
                self.helm.cert_manager_namespace,
                "cert-manager",
                self.helm.cert_manager_chart,
                version=self.helm.cert_manager_version,
                values_file=self.helm.cert_manager_values,
                args=["--set", "crds.enabled=true", "--set", f"image.pullPolicy={self.pull_policy}"],
            )
        except PreconditionError:
            raise
        except DeployerError as exc:
            raise DeployerError(f"Cannot install cert manager: {exc}") from exc

    def extract_ca_cert_to_config(self, namespace: str):
        """Copies the CA certificate to a config map so that workloads never see the CA key."""
        ca_cert = self.client.get_secret_value(namespace, CA_SECRET_NAME, "ca.crt")
        builder = ManifestBuilder(namespace)
        self.client.apply([builder.ca_config_map(ca_cert)], "failed to create the CA config map")
