"""Configuration loader for ServerDeployer."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from serverdeployer.errors import DeployerError

DEFAULT_CONFIG_FILE = ".serverdeployer.yml"


class ConfigLoader:
    """Loads YAML configuration files for CLI defaults."""

    SUPPORTED_KEYS = {
        "namespace",
        "verbose",
        "log_file",
        "report_file",
        "image",
        "registry",
        "tag",
        "pull_policy",
        "db_upgrade_image",
        "timezone",
        "email_from",
        "debug",
        "ssl_cnames",
        "ssl_country",
        "ssl_state",
        "ssl_city",
        "ssl_org",
        "ssl_ou",
        "ssl_email",
        "ssl_password",
        "ssl_ca_root",
        "ssl_ca_key",
        "ssl_server_cert",
        "ssl_server_key",
        "db_user",
        "db_password",
        "db_name",
        "db_host",
        "db_port",
        "admin_login",
        "admin_password",
        "admin_first_name",
        "admin_last_name",
        "admin_email",
        "admin_organization",
        "volumes_class",
        "volumes_database_size",
        "volumes_database_class",
        "volumes_packages_size",
        "volumes_packages_class",
        "volumes_www_size",
        "volumes_www_class",
        "volumes_cache_size",
        "volumes_cache_class",
        "volumes_mirror",
        "coco_replicas",
        "coco_image",
        "hub_api_replicas",
        "hub_api_image",
        "cert_manager_namespace",
        "cert_manager_chart",
        "cert_manager_version",
        "cert_manager_values",
        "scc_user",
        "scc_password",
        "ssh_key_private",
        "ssh_key_public",
        "ssh_knownhosts",
        "ssh_config",
        "user",
        "prepare",
    }

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise DeployerError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise DeployerError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise DeployerError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise DeployerError(f"Unknown configuration keys: {unknown_list}")

        return parsed
