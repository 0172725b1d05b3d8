"""Well-known names shared by the deployer components."""

SERVER_APP = "uyuni"
SERVER_COMPONENT = "server"
COCO_COMPONENT = "coco"
HUB_API_COMPONENT = "hub-api"
APP_LABEL = "app"
COMPONENT_LABEL = "component"
SERVER_SELECTOR = f"{APP_LABEL}={SERVER_APP},{COMPONENT_LABEL}={SERVER_COMPONENT}"

SERVER_DEPLOY_NAME = "uyuni"
COCO_DEPLOY_NAME = "uyuni-coco"
HUB_API_DEPLOY_NAME = "uyuni-hub-api"
WEB_SERVICE_NAME = "web"

DB_VOLUME_NAME = "var-pgsql"
MIGRATION_DATA_VOLUME = "migration-data"
MIGRATION_DATA_PATH = "/var/lib/uyuni-tools"

MIGRATION_JOB_NAME = "uyuni-data-sync"
DB_UPGRADE_JOB_NAME = "uyuni-db-upgrade"
DB_FINALIZE_JOB_NAME = "uyuni-db-finalize"
POST_UPGRADE_JOB_NAME = "uyuni-post-upgrade"

INSPECTOR_POD_NAME = "uyuni-image-inspector"
EXTRACTOR_POD_NAME = "uyuni-data-extractor"

DB_SECRET_NAME = "db-credentials"
CERT_SECRET_NAME = "uyuni-cert"
CA_SECRET_NAME = "uyuni-ca"
CA_CONFIGMAP_NAME = "uyuni-ca"
CA_ISSUER_NAME = "uyuni-ca-issuer"
SSH_SECRET_NAME = "uyuni-migration-key"
SSH_CONFIGMAP_NAME = "uyuni-migration-ssh"
SCC_SECRET_NAME = "scc-credentials"
SCC_REGISTRY = "registry.suse.com"

POST_UPGRADE_TIMEOUT = 60
INSPECT_POD_TIMEOUT = 60
ISSUER_TIMEOUT = 60
SECRET_TIMEOUT = 60
SERVER_STOP_TIMEOUT = 300
DEFAULT_POLL_INTERVAL = 2.0

REQUIRED_TOOLS = ("kubectl", "helm")
