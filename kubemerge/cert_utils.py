import base64
import binascii
import subprocess
from collections import namedtuple
from datetime import datetime, timedelta, timezone
from pathlib import Path

from common.utils import warn
from common.variables import CERT_EXPIRY_WARNING_DAYS
from kubemerge.kubeconfig_utils import CertificateCheckFailure, get_named

CertificateDates = namedtuple('CertificateDates', ['not_before', 'not_after'])

# openssl prints dates like "Jan  2 15:04:05 2030 GMT"
OPENSSL_DATE_FORMAT = "%b %d %H:%M:%S %Y %Z"


def read_certificate(document: dict, credential_name: str, base_dir: Path = None):
    """
    Return the raw client certificate of a credential, or None when it has none.
    """
    entry = get_named(document, "users", credential_name)
    if entry is None:
        raise CertificateCheckFailure(f"User '{credential_name}' not found")

    user = entry["user"]

    if user.get("client-certificate-data"):
        try:
            return base64.b64decode(user["client-certificate-data"])
        except (binascii.Error, ValueError) as e:
            raise CertificateCheckFailure(f"client-certificate-data of '{credential_name}' is not valid base64: {e}") from e

    if user.get("client-certificate"):
        cert_path = Path(user["client-certificate"]).expanduser()
        if not cert_path.is_absolute() and base_dir is not None:
            cert_path = Path(base_dir) / cert_path
        try:
            return cert_path.read_bytes()
        except OSError as e:
            raise CertificateCheckFailure(f"Cannot read client-certificate of '{credential_name}': {e}") from e

    return None

def parse_openssl_date(value: str):
    try:
        return datetime.strptime(value.strip(), OPENSSL_DATE_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError as e:
        raise CertificateCheckFailure(f"Could not parse date: {value}") from e

def get_certificate_dates(cert: bytes):
    """
    Ask openssl for the validity period of a PEM or DER certificate.
    """
    inform = "PEM" if cert.lstrip().startswith(b"-----BEGIN") else "DER"

    try:
        res = subprocess.run(
            ["openssl", "x509", "-noout", "-startdate", "-enddate", "-inform", inform],
            input=cert,
            capture_output=True,
            check=True,
            timeout=10,
        )
    except FileNotFoundError as e:
        raise CertificateCheckFailure("openssl not found in PATH") from e
    except subprocess.CalledProcessError as e:
        stderr = e.stderr.decode(errors="replace").strip() if e.stderr else ""
        raise CertificateCheckFailure(f"openssl failed to parse the certificate: {stderr}") from e
    except subprocess.TimeoutExpired as e:
        raise CertificateCheckFailure("Timeout parsing certificate") from e

    dates = {}
    for line in res.stdout.decode(errors="replace").splitlines():
        key, sep, value = line.partition("=")
        if sep:
            dates[key.strip()] = value

    if "notBefore" not in dates or "notAfter" not in dates:
        raise CertificateCheckFailure(f"Unexpected openssl output: {res.stdout!r}")

    return CertificateDates(
        not_before=parse_openssl_date(dates["notBefore"]),
        not_after=parse_openssl_date(dates["notAfter"]),
    )

def check_certificate_expiry(document: dict, credential_name: str, base_dir: Path = None, now: datetime = None, verbose: bool = True):
    """
    Print the validity period of a credential's client certificate.

    Never raises: a missing or unreadable certificate is reported and None is returned.
    """
    try:
        cert = read_certificate(document, credential_name, base_dir)
        if cert is None:
            warn(f"User '{credential_name}' has no client certificate, skipping expiry check")
            return None
        dates = get_certificate_dates(cert)
    except CertificateCheckFailure as e:
        warn(f"Certificate check failed for user '{credential_name}': {e}")
        return None

    if verbose:
        print(f"Certificate for user '{credential_name}':")
        print(f"  Valid from: {dates.not_before.isoformat()}")
        print(f"  Valid until: {dates.not_after.isoformat()}")

    now = now or datetime.now(timezone.utc)
    if dates.not_after < now:
        warn(f"Certificate for user '{credential_name}' expired on {dates.not_after.isoformat()}")
    elif dates.not_after - now < timedelta(days=CERT_EXPIRY_WARNING_DAYS):
        warn(f"Certificate for user '{credential_name}' expires in {(dates.not_after - now).days} days")

    return dates
