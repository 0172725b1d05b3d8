"""Shell scripts executed inside the server image by pods and jobs."""

from typing import Sequence

from serverdeployer.constants import MIGRATION_DATA_PATH
from serverdeployer.models import VolumeMount

INSPECT_SCRIPT = r"""
echo "current_pg_version=$(cat /var/lib/pgsql/data/PG_VERSION 2>/dev/null)"
echo "image_pg_version=$(rpm -qa --qf '%{VERSION}\n' 'name=postgresql[0-9][0-9]-server' | cut -d. -f1 | sort -n | tail -1)"
echo "server_version=$(sed -n 's/^web.version\s*=\s*\(.*\)$/\1/p' /usr/share/rhn/config-defaults/rhn_web.conf 2>/dev/null)"
echo "timezone=$(readlink /etc/localtime 2>/dev/null | sed 's|.*/zoneinfo/||')"
echo "db_user=$(sed -n 's/^db_user\s*=\s*\(.*\)$/\1/p' /etc/rhn/rhn.conf 2>/dev/null)"
echo "db_password=$(sed -n 's/^db_password\s*=\s*\(.*\)$/\1/p' /etc/rhn/rhn.conf 2>/dev/null)"
echo "db_name=$(sed -n 's/^db_name\s*=\s*\(.*\)$/\1/p' /etc/rhn/rhn.conf 2>/dev/null)"
echo "db_port=$(sed -n 's/^db_port\s*=\s*\(.*\)$/\1/p' /etc/rhn/rhn.conf 2>/dev/null)"
echo "fqdn=$(sed -n 's/^java.hostname\s*=\s*\(.*\)$/\1/p' /etc/rhn/rhn.conf 2>/dev/null)"
if grep -q jdwp /etc/tomcat/conf.d/remote_debug.conf 2>/dev/null; then echo "debug=true"; else echo "debug=false"; fi
if test -e /etc/sysconfig/uyuni-hub-xmlrpc-api; then echo "has_hub_api=true"; else echo "has_hub_api=false"; fi
"""

INSPECT_MOUNTS = (
    VolumeMount("var-pgsql", "/var/lib/pgsql"),
    VolumeMount("etc-rhn", "/etc/rhn"),
    VolumeMount("etc-tomcat", "/etc/tomcat"),
)


def build_extractor_script(data_path: str = MIGRATION_DATA_PATH) -> str:
    """Prints every file of ``data_path`` as a YAML literal block."""
    return f'for f in {data_path}/*; do echo "`basename $f`: |2"; cat $f | sed \'s/^/  /\'; done'


def build_migration_script(
    source_fqdn: str,
    user: str,
    prepare: bool,
    mounts: Sequence[VolumeMount],
    data_path: str = MIGRATION_DATA_PATH,
) -> str:
    rsync = "rsync -e \"$SSH\" --rsync-path='sudo rsync' -avz --delete"
    sync_lines = "\n".join(
        f"{rsync} {user}@{source_fqdn}:{mount.mount_path}/ {mount.mount_path}/"
        for mount in mounts
        if mount.mount_path != data_path
    )
    finish = "exit 0" if prepare else f"""
$SSH {user}@{source_fqdn} sudo cat /etc/pki/tls/private/spacewalk.key > {data_path}/spacewalk.key
$SSH {user}@{source_fqdn} sudo cat /etc/pki/tls/certs/spacewalk.crt > {data_path}/spacewalk.crt
$SSH {user}@{source_fqdn} sudo cat /root/ssl-build/RHN-ORG-PRIVATE-SSL-KEY > {data_path}/RHN-ORG-PRIVATE-SSL-KEY || true
$SSH {user}@{source_fqdn} sudo cat /root/ssl-build/RHN-ORG-TRUSTED-SSL-CERT > {data_path}/RHN-ORG-TRUSTED-SSL-CERT
{{
{INSPECT_SCRIPT.strip()}
}} > {data_path}/data
"""
    return f"""
set -e
SSH="ssh -o User={user} -A -i /root/.ssh/key -o UserKnownHostsFile=/root/.ssh/known_hosts -F /root/.ssh/config"
echo "Stopping services on {source_fqdn}..."
$SSH {user}@{source_fqdn} sudo spacewalk-service stop || true
{sync_lines}
{finish.strip()}
""".strip()


def build_db_upgrade_script(old_version: int, new_version: int) -> str:
    return f"""
set -e
echo "Upgrading PostgreSQL from {old_version} to {new_version}..."
test -d /var/lib/pgsql/data-pg{old_version} && rm -rf /var/lib/pgsql/data-pg{old_version}
mv /var/lib/pgsql/data /var/lib/pgsql/data-pg{old_version}
mkdir -p /var/lib/pgsql/data
chown postgres:postgres /var/lib/pgsql/data
su -s /bin/bash - postgres -c "initdb -D /var/lib/pgsql/data --locale=C.UTF-8"
su -s /bin/bash - postgres -c "pg_upgrade --old-bindir=/usr/lib/postgresql{old_version}/bin \\
    --new-bindir=/usr/lib/postgresql{new_version}/bin \\
    --old-datadir=/var/lib/pgsql/data-pg{old_version} \\
    --new-datadir=/var/lib/pgsql/data"
cp /var/lib/pgsql/data-pg{old_version}/pg_hba.conf /var/lib/pgsql/data/pg_hba.conf
echo "PostgreSQL upgrade done."
""".strip()


def build_db_finalize_script(
    run_autotune: bool,
    run_reindex: bool,
    run_schema_update: bool,
    migration: bool,
) -> str:
    steps = ['su -s /bin/bash - postgres -c "pg_ctl start -D /var/lib/pgsql/data -w"']
    if run_autotune:
        steps.append("/usr/lib/susemanager/bin/susemanager-postgres-tune")
    if run_reindex:
        steps.append('su -s /bin/bash - postgres -c "reindexdb -a -v"')
    if run_schema_update:
        steps.append("/usr/sbin/spacewalk-startup-helper check-database")
    if migration:
        steps.append(
            "psql -U postgres -d susemanager "
            "-c \"UPDATE rhnTaskoRun SET status = 'INTERRUPTED' WHERE status = 'RUNNING';\""
        )
    steps.append('su -s /bin/bash - postgres -c "pg_ctl stop -D /var/lib/pgsql/data -w"')
    return "set -e\n" + "\n".join(steps)


def build_post_upgrade_script() -> str:
    return """
set -e
echo "Running post upgrade tasks..."
test -x /usr/bin/spacewalk-sql && echo 'SELECT 1;' | spacewalk-sql --select-mode - || true
echo "Post upgrade done."
""".strip()


SETUP_SCRIPT = """
set -e
/usr/lib/susemanager/bin/mgr-setup -l /var/log/susemanager_setup.log -s -n
"""
