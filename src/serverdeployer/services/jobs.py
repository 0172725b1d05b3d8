"""Batch job sequencing for ServerDeployer."""

from typing import Optional, Sequence

from serverdeployer.constants import (
    DB_FINALIZE_JOB_NAME,
    DB_UPGRADE_JOB_NAME,
    MIGRATION_JOB_NAME,
    POST_UPGRADE_JOB_NAME,
    POST_UPGRADE_TIMEOUT,
)
from serverdeployer.models import (
    ImageConfig,
    InspectedConfiguration,
    JobDescriptor,
    VersionTransition,
    VolumeMount,
)
from serverdeployer.services.images import compute_image
from serverdeployer.services.manifests import ManifestBuilder
from serverdeployer.services.scripts import (
    build_db_finalize_script,
    build_db_upgrade_script,
    build_migration_script,
    build_post_upgrade_script,
)

DB_MOUNTS = (VolumeMount("var-pgsql", "/var/lib/pgsql"),)
FINALIZE_MOUNTS = DB_MOUNTS + (VolumeMount("etc-rhn", "/etc/rhn"),)


def migration_job(
    image: str,
    pull_policy: str,
    source_fqdn: str,
    user: str,
    prepare: bool,
    mounts: Sequence[VolumeMount],
) -> JobDescriptor:
    return JobDescriptor(
        name=MIGRATION_JOB_NAME,
        image=image,
        script=build_migration_script(source_fqdn, user, prepare, mounts),
        mounts=tuple(mounts),
        pull_policy=pull_policy,
    )


def db_upgrade_job(
    registry: str,
    server_image: ImageConfig,
    upgrade_image: Optional[ImageConfig],
    old_version: int,
    new_version: int,
) -> JobDescriptor:
    """The upgrade image defaults to the server image name with a migration suffix."""
    if upgrade_image is None or not upgrade_image.name:
        image = compute_image(
            registry,
            server_image,
            server_image.tag,
            suffix=f"-migration-{old_version}-{new_version}",
        )
    else:
        image = compute_image(registry, upgrade_image, server_image.tag)

    return JobDescriptor(
        name=DB_UPGRADE_JOB_NAME,
        image=image,
        script=build_db_upgrade_script(old_version, new_version),
        mounts=DB_MOUNTS,
        pull_policy=server_image.pull_policy,
    )


def db_finalize_job(
    image: str, pull_policy: str, schema_update_required: bool, migration: bool
) -> JobDescriptor:
    return JobDescriptor(
        name=DB_FINALIZE_JOB_NAME,
        image=image,
        script=build_db_finalize_script(
            run_autotune=True,
            run_reindex=True,
            run_schema_update=schema_update_required,
            migration=migration,
        ),
        mounts=FINALIZE_MOUNTS,
        pull_policy=pull_policy,
    )


def post_upgrade_job(image: str, pull_policy: str) -> JobDescriptor:
    return JobDescriptor(
        name=POST_UPGRADE_JOB_NAME,
        image=image,
        script=build_post_upgrade_script(),
        mounts=FINALIZE_MOUNTS,
        timeout=POST_UPGRADE_TIMEOUT,
        pull_policy=pull_policy,
    )


class JobSequencer:
    """Runs run-to-completion jobs one after the other."""

    def __init__(self, client, logger, console):
        self.client = client
        self.logger = logger
        self.console = console

    def run_job(self, namespace: str, descriptor: JobDescriptor, with_ssh: bool = False):
        """Replaces any job with the same name and blocks until it completes.

        Failed jobs are never retried: a half-applied database migration needs
        a human to look at it first.
        """
        builder = ManifestBuilder(namespace)
        job = builder.migration_job(descriptor) if with_ssh else builder.job(descriptor)

        self.console.print(f"[blue]Running job {descriptor.name}...[/blue]")
        self.logger.info(
            "Starting job %s with image %s (timeout: %s)",
            descriptor.name,
            descriptor.image,
            "none" if descriptor.timeout is None else f"{descriptor.timeout}s",
        )
        self.client.recreate(job, f"failed to run the {descriptor.name} job")
        self.client.wait_for_job(namespace, descriptor.name, descriptor.timeout)
        self.logger.info("Job %s completed", descriptor.name)

    def run_upgrade_jobs(
        self,
        namespace: str,
        transition: VersionTransition,
        inspected: InspectedConfiguration,
        registry: str,
        server_image: ImageConfig,
        server_image_ref: str,
        upgrade_image: Optional[ImageConfig] = None,
        migration: bool = False,
    ):
        """Runs the database jobs for a namespace holding existing data.

        The schema upgrade job only runs for an upgrade transition. The
        finalize and post upgrade jobs always run.
        """
        schema_update_required = transition is VersionTransition.UPGRADE
        if schema_update_required:
            self.console.print(
                f"[blue]Upgrading PostgreSQL database from {inspected.current_pg_version} "
                f"to {inspected.image_pg_version}...[/blue]"
            )
            self.run_job(
                namespace,
                db_upgrade_job(
                    registry,
                    server_image,
                    upgrade_image,
                    inspected.current_pg_version,
                    inspected.image_pg_version,
                ),
            )

        self.console.print(
            "[blue]Running database finalization, this could be long depending on the size "
            "of the database...[/blue]"
        )
        self.run_job(
            namespace,
            db_finalize_job(
                server_image_ref, server_image.pull_policy, schema_update_required, migration
            ),
        )
        self.run_job(namespace, post_upgrade_job(server_image_ref, server_image.pull_policy))
