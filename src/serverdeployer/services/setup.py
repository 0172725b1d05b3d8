"""First-boot setup of the running server."""

import shlex
from typing import Callable, Dict, Optional

from serverdeployer.errors import DeployerError, SetupFailedError
from serverdeployer.errors_catalog import actionable_error
from serverdeployer.models import EffectiveConfiguration, ServerConfig
from serverdeployer.services.scripts import SETUP_SCRIPT


class KubectlConnection:
    """Runs commands inside the first pod matching a label selector."""

    def __init__(self, run_cmd: Callable, namespace: str, selector: str):
        self.run_cmd = run_cmd
        self.namespace = namespace
        self.selector = selector

    def get_pod_name(self) -> str:
        result = self.run_cmd(
            [
                "kubectl",
                "get",
                "pod",
                "-n",
                self.namespace,
                "-l",
                self.selector,
                "-o",
                "jsonpath={.items[0].metadata.name}",
            ],
            check=True,
            capture_output=True,
        )
        pod_name = (result.stdout or "").strip()
        if not pod_name:
            raise DeployerError(f"No pod matches {self.selector} in namespace {self.namespace}.")
        return pod_name

    def run_script(self, script: str):
        """Feeds ``script`` to a shell in the pod so that secrets never show in the process list."""
        self.run_cmd(
            ["kubectl", "exec", "-i", "-n", self.namespace, self.get_pod_name(), "--", "sh", "-s"],
            check=True,
            capture_output=True,
            input_text=script,
        )


def build_setup_env(
    config: ServerConfig,
    effective: EffectiveConfiguration,
    fqdn: str,
    env_overrides: Optional[Dict[str, str]] = None,
) -> Dict[str, str]:
    ssl = config.ssl
    admin = config.admin
    env = {
        "UYUNI_FQDN": fqdn,
        "TZ": effective.timezone,
        "MANAGER_USER": effective.db_user,
        "MANAGER_PASS": effective.db_password,
        "MANAGER_DB_NAME": effective.db_name,
        "MANAGER_DB_HOST": config.db.host,
        "MANAGER_DB_PORT": str(effective.db_port),
        "MANAGER_ADMIN_EMAIL": admin.email,
        "MANAGER_MAIL_FROM": config.email_from,
        "MANAGER_ENABLE_TFTP": "Y",
        "CERT_O": ssl.org,
        "CERT_OU": ssl.ou,
        "CERT_CITY": ssl.city,
        "CERT_STATE": ssl.state,
        "CERT_COUNTRY": ssl.country,
        "CERT_EMAIL": ssl.email,
        "CERT_CNAMES": " ".join(ssl.cnames),
        "CERT_PASS": ssl.password,
        "ADMIN_USER": admin.login,
        "ADMIN_PASS": admin.password,
        "ADMIN_FIRST_NAME": admin.first_name,
        "ADMIN_LAST_NAME": admin.last_name,
        "ADMIN_ORG": admin.organization,
    }
    env.update(env_overrides or {})
    return env


class SetupExecutor:
    def __init__(self, logger, console):
        self.logger = logger
        self.console = console

    def run_setup(
        self,
        connection,
        config: ServerConfig,
        effective: EffectiveConfiguration,
        fqdn: str,
        env_overrides: Optional[Dict[str, str]] = None,
    ):
        """Runs the setup script in the server pod.

        Callers own the cleanup: a failure leaves the server running.
        """
        self.console.print("[blue]Setting up the server...[/blue]")
        env = build_setup_env(config, effective, fqdn, env_overrides)
        exports = "\n".join(f"export {key}={shlex.quote(value)}" for key, value in sorted(env.items()))
        try:
            connection.run_script(f"{exports}\n{SETUP_SCRIPT}")
        except DeployerError as exc:
            raise SetupFailedError(actionable_error("setup_failed", error=str(exc))) from exc
        self.console.print("[green]Server set up.[/green]")
