"""Actionable error catalog for ServerDeployer."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "missing_tool": {
        "what": "Required command `{tool}` was not found.",
        "next": "Install {tool} and make sure it is in the PATH before retrying.",
    },
    "invalid_fqdn": {
        "what": "`{fqdn}` is not a valid fully qualified domain name.",
        "next": "Pass a host name with at least one dot, e.g. `server.example.com`.",
    },
    "db_downgrade": {
        "what": "Downgrading database from PostgreSQL {old} to {new} is not supported.",
        "next": "Use an image providing PostgreSQL {old} or newer.",
    },
    "server_downgrade": {
        "what": "Cannot downgrade the running server from {old} to {new}.",
        "next": "Pick an image tag with version {old} or newer.",
    },
    "job_failed": {
        "what": "Job `{name}` failed.",
        "next": "Inspect `kubectl logs -n {namespace} job/{name}` before running again.",
    },
    "setup_failed": {
        "what": "Server setup failed: {error}",
        "next": "The server deployment was scaled down. Check the setup logs in the pod and retry.",
    },
    "missing_migration_data": {
        "what": "Found no data file after migration.",
        "next": "Check the output of the migration job and rerun `migrate`.",
    },
    "nothing_to_upgrade": {
        "what": "No existing deployment found in namespace `{namespace}`.",
        "next": "Use `install` for a new server or check the `--namespace` option.",
    },
    "missing_db_credentials": {
        "what": "No database credentials are available for the server setup.",
        "next": "Pass `--db-user` and `--db-password`, or set `db_user` and `db_password` in the config file.",
    },
    "missing_ssh": {
        "what": "No SSH {item} provided for the migration.",
        "next": "Pass `--ssh-key-public`, `--ssh-key-private` and `--ssh-knownhosts` or create the `{resource}` resource.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
