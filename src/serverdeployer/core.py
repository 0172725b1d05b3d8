import logging
import shutil
from typing import List, Optional, Tuple

from rich.console import Console

from .constants import (
    DB_SECRET_NAME,
    MIGRATION_DATA_PATH,
    MIGRATION_DATA_VOLUME,
    REQUIRED_TOOLS,
    SERVER_SELECTOR,
    SERVER_STOP_TIMEOUT,
)
from .errors import DeployerError, PreconditionError, SetupFailedError
from .errors_catalog import actionable_error
from .models import (
    DeploymentTarget,
    EffectiveConfiguration,
    InspectedConfiguration,
    MigrationPayload,
    ServerConfig,
    VersionTransition,
    VolumeMount,
    merge_configuration,
)
from .services.certificates import CertificateProvisioner, select_certificate_strategy
from .services.cluster import HelmClient, KubectlClient
from .services.command_runner import CommandRunner
from .services.images import compute_image
from .services.jobs import JobSequencer, migration_job
from .services.manifests import ManifestBuilder, get_server_mounts, tune_mounts
from .services.migration import ensure_ssh_resources
from .services.prober import ClusterStateProber
from .services.report import RunReportService
from .services.rollout import WorkloadRolloutManager
from .services.setup import KubectlConnection, SetupExecutor
from .services.validation import ValidationService
from .services.version_gate import classify, ensure_supported, sanity_check

console = Console(stderr=True)
logger = logging.getLogger("serverdeployer")


class ServerDeployer:
    ACTIONS = ("install", "upgrade", "migrate")

    def __init__(
        self,
        target: DeploymentTarget,
        config: ServerConfig,
        report_file: Optional[str] = None,
        command_runner: Optional[CommandRunner] = None,
        client=None,
        helm_client=None,
        connection=None,
        validation_service: Optional[ValidationService] = None,
    ):
        self.target = target
        self.config = config
        self.connection = connection
        self.current_step_name: Optional[str] = None

        self.command_runner = command_runner or CommandRunner(logger=logger)
        self.client = client or KubectlClient(self._run_cmd, logger)
        self.helm_client = helm_client or HelmClient(self._run_cmd, logger)
        self.validation_service = validation_service or ValidationService(which=shutil.which)
        self.report_service = RunReportService(report_file=report_file, logger=logger)

        self.prober = ClusterStateProber(self.client, logger=logger, console=console)
        self.certificates = CertificateProvisioner(
            self.client,
            self.helm_client,
            logger=logger,
            console=console,
            helm=config.helm,
            pull_policy=config.image.pull_policy,
        )
        self.jobs = JobSequencer(self.client, logger=logger, console=console)
        self.rollout = WorkloadRolloutManager(self.client, logger=logger, console=console)
        self.setup_executor = SetupExecutor(logger=logger, console=console)

    def _run_step(self, name: str, callback, *args, **kwargs):
        self.report_service.step_started(name)
        self.current_step_name = name
        logger.info("Step %s started", name)

        try:
            result = callback(*args, **kwargs)
        except Exception as exc:
            self.report_service.step_finished(name, "failed", error=str(exc))
            logger.info("Step %s failed", name)
            raise

        self.report_service.step_finished(name, "success")
        logger.info("Step %s finished", name)
        self.current_step_name = None
        return result

    def _run_cmd(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
        timeout: Optional[float] = None,
        input_text: Optional[str] = None,
    ):
        return self.command_runner.run(
            cmd,
            check=check,
            capture_output=capture_output,
            timeout=timeout,
            input_text=input_text,
        )

    @property
    def server_image(self) -> str:
        return compute_image(self.config.image.registry, self.config.image)

    def server_mounts(self) -> List[VolumeMount]:
        return tune_mounts(get_server_mounts(), self.config.volumes)

    def validate_environment(self):
        console.print("[blue]Validating environment...[/blue]")
        self.validation_service.ensure_tools(REQUIRED_TOOLS)
        if self.target.fqdn:
            self.validation_service.validate_fqdn(self.target.fqdn)

    def check_versions(
        self, namespace: str, image: str, running_image: Optional[str]
    ) -> Tuple[InspectedConfiguration, VersionTransition]:
        """Inspects the target and running images and rejects unsupported transitions."""
        inspected = self.prober.inspect(namespace, image, self.config.image.pull_policy)

        running = None
        if running_image:
            running = self.prober.inspect(namespace, running_image, "Never")

        self.report_service.set_versions(
            installed_pg=inspected.current_pg_version,
            target_pg=inspected.image_pg_version,
            transition=classify(inspected.current_pg_version, inspected.image_pg_version).value,
            server=inspected.server_version or None,
        )

        sanity_check(running, inspected)
        transition = ensure_supported(inspected.current_pg_version, inspected.image_pg_version)
        console.print(
            f"[blue]PostgreSQL {inspected.current_pg_version} -> {inspected.image_pg_version}: "
            f"{transition.value}[/blue]"
        )
        return inspected, transition

    def stop_server(self, namespace: str):
        """Scales the server to zero and waits until its pods are gone."""
        console.print("[blue]Stopping the server...[/blue]")
        self.client.scale_to(namespace, SERVER_SELECTOR, 0)
        self.client.wait_for_no_pods(namespace, SERVER_SELECTOR, SERVER_STOP_TIMEOUT)

    def store_db_credentials(self, effective: EffectiveConfiguration):
        if not (effective.db_user and effective.db_password):
            logger.warning("No database credentials to store in the %s secret.", DB_SECRET_NAME)
            return
        secret = ManifestBuilder(self.target.namespace).db_secret(effective.db_user, effective.db_password)
        self.client.apply([secret], "failed to create the database credentials secret")

    def run_setup(self, effective: EffectiveConfiguration):
        """Runs the setup, stopping the server when it fails."""
        namespace = self.target.namespace
        connection = self.connection or KubectlConnection(self._run_cmd, namespace, SERVER_SELECTOR)
        try:
            self.setup_executor.run_setup(
                connection, self.config, effective, effective.fqdn, {"NO_SSL": "Y"}
            )
        except SetupFailedError:
            try:
                self.client.scale_to(namespace, SERVER_SELECTOR, 0)
            except DeployerError as stop_exc:
                logger.error("Failed to stop the server: %s", stop_exc)
            raise

        self.store_db_credentials(effective)

    def reconcile(self, upgrade: bool = False, payload: Optional[MigrationPayload] = None):
        """Drives the namespace to a running, set up server.

        Probe and version gate run before any volume or job is touched: a
        rejected transition leaves the namespace as it was.
        """
        namespace = self.target.namespace
        image = self.server_image
        pull_policy = self.config.image.pull_policy

        self._run_step("create_namespace", self.client.create_namespace, namespace)
        has_prior, running_image = self._run_step("probe", self.prober.probe, namespace)
        if upgrade and not has_prior:
            raise PreconditionError(actionable_error("nothing_to_upgrade", namespace=namespace))

        inspected = None
        transition = None
        if has_prior:
            inspected, transition = self._run_step(
                "version_gate", self.check_versions, namespace, image, running_image
            )
        effective = merge_configuration(
            self.config, self.target.fqdn, payload.data if payload is not None else inspected
        )
        if not effective.fqdn:
            raise PreconditionError(actionable_error("invalid_fqdn", fqdn=""))

        needs_setup = payload is None and not (
            has_prior and self.client.exists("secret", namespace, DB_SECRET_NAME)
        )
        if needs_setup and not (effective.db_user and effective.db_password):
            raise PreconditionError(actionable_error("missing_db_credentials"))

        if transition is VersionTransition.UPGRADE and running_image:
            self._run_step("stop_server", self.stop_server, namespace)

        mounts = self.server_mounts()
        self._run_step("create_volumes", self.rollout.ensure_volumes, namespace, mounts)

        if has_prior:
            self._run_step(
                "database_jobs",
                self.jobs.run_upgrade_jobs,
                namespace,
                transition,
                inspected,
                self.config.image.registry,
                self.config.image,
                image,
                upgrade_image=self.config.db_upgrade_image,
                migration=payload is not None,
            )

        cluster_info = self._run_step("check_cluster", self.client.get_cluster_info)
        strategy = select_certificate_strategy(self.config.ssl, payload)
        deployment_target = DeploymentTarget(namespace=namespace, fqdn=effective.fqdn)
        issuer = self._run_step(
            "certificates", self.certificates.provision, strategy, deployment_target, cluster_info
        )

        self._run_step(
            "rollout",
            self.rollout.rollout,
            deployment_target,
            issuer,
            cluster_info.ingress,
            image,
            pull_policy,
            effective,
            mounts,
            mirror_volume=self.config.volumes.mirror,
            scc=self.config.scc,
        )

        if payload is not None:
            self._run_step("store_db_credentials", self.store_db_credentials, effective)
        elif needs_setup:
            self._run_step("setup", self.run_setup, effective)
        else:
            console.print("[yellow]Server already set up, skipping setup.[/yellow]")
            logger.info("Found the %s secret, setup already done.", DB_SECRET_NAME)

        started = self._run_step(
            "side_services", self.rollout.start_side_services, namespace, self.config, effective
        )
        if started:
            self._run_step("wait_side_services", self.client.wait_for_deployments, namespace, started)

    def migrate(self):
        """Copies the data of the server named by the target FQDN, then deploys it."""
        namespace = self.target.namespace
        source_fqdn = self.target.fqdn
        image = self.server_image

        self._run_step("create_namespace", self.client.create_namespace, namespace)
        self._run_step(
            "ssh_resources", ensure_ssh_resources, self.client, namespace, self.config.ssh, logger
        )

        mounts = self.server_mounts() + [VolumeMount(MIGRATION_DATA_VOLUME, MIGRATION_DATA_PATH)]
        self._run_step("create_volumes", self.rollout.ensure_volumes, namespace, mounts)

        descriptor = migration_job(
            image,
            self.config.image.pull_policy,
            source_fqdn,
            self.config.migration_user,
            self.config.migration_prepare,
            mounts,
        )
        self._run_step("data_transfer", self.jobs.run_job, namespace, descriptor, with_ssh=True)

        if self.config.migration_prepare:
            console.print("[green]Migration prepared. Run again without --prepare to finish.[/green]")
            return

        payload = self._run_step(
            "extract_migration_data", self.prober.extract_migration_data, namespace, image
        )
        self.reconcile(payload=payload)

    def run(self, action: str = "install") -> int:
        exit_code = 1
        report_status = "failed"
        report_error: Optional[str] = None

        try:
            logger.info("Starting ServerDeployer %s...", action)
            if action not in self.ACTIONS:
                raise DeployerError(f"Invalid action. Supported actions: {', '.join(self.ACTIONS)}")

            self.report_service.start_run(action, self.target.namespace, self.target.fqdn)
            self._run_step("validate_environment", self.validate_environment)

            if action == "migrate":
                self.migrate()
            else:
                self.reconcile(upgrade=action == "upgrade")

            console.print(f"[bold green]Server {action} completed.[/bold green]")
            report_status = "success"
            exit_code = 0
            return exit_code

        except KeyboardInterrupt:
            console.print("[bold red]Operation cancelled by user.[/bold red]")
            logger.info("Operation cancelled by user")
            report_status = "aborted"
            report_error = "Operation cancelled by user."
            exit_code = 1
            return exit_code
        except DeployerError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            logger.error(str(exc))
            report_error = str(exc)
            exit_code = 1
            return exit_code
        except Exception as exc:
            console.print(f"[bold red]Unexpected error:[/bold red] {exc}")
            logger.exception("Unexpected error")
            report_error = str(exc)
            exit_code = 1
            return exit_code
        finally:
            self.report_service.finalize(report_status, error=report_error)
