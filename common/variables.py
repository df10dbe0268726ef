from pathlib import Path

# Same default location kubectl uses when KUBECONFIG is unset.
DEFAULT_KUBECONFIG_PATH = Path.home() / ".kube" / "config"

# Backups are written next to the kubeconfig as <name>.bak.<timestamp>
BACKUP_SUFFIX = ".bak"
BACKUP_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"

# Certificates expiring within this many days are reported as a warning.
CERT_EXPIRY_WARNING_DAYS = 30

# File references that flattening inlines as base64 data, per collection.
CLUSTER_FILE_FIELDS = {
    "certificate-authority": "certificate-authority-data",
}
USER_FILE_FIELDS = {
    "client-certificate": "client-certificate-data",
    "client-key": "client-key-data",
}
