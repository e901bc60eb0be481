"""SSL certificate handling for gen-http-proxy."""

import ssl
import subprocess
from pathlib import Path

from .exceptions import TLSConfigurationError


def create_ssl_context(keyfile: str, certfile: str) -> ssl.SSLContext:
    """Load the key/certificate pair into a server-side SSL context."""
    context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    try:
        context.load_cert_chain(certfile=certfile, keyfile=keyfile)
    except (OSError, ssl.SSLError) as e:
        raise TLSConfigurationError(keyfile, certfile, str(e)) from e
    return context


def generate_self_signed_cert(keyfile: str, certfile: str, common_name: str = "localhost"):
    """Generate self-signed SSL certificate."""
    key_path = Path(keyfile)
    cert_path = Path(certfile)
    key_path.parent.mkdir(parents=True, exist_ok=True)
    cert_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        subprocess.run([
            "openssl", "req", "-x509", "-nodes",
            "-days", "365",
            "-newkey", "rsa:2048",
            "-keyout", str(key_path),
            "-out", str(cert_path),
            "-subj", f"/CN={common_name}"
        ], capture_output=True, check=True)
    except (OSError, subprocess.CalledProcessError) as e:
        raise TLSConfigurationError(keyfile, certfile, f"openssl failed: {e}") from e

    # Set permissions
    key_path.chmod(0o600)
    cert_path.chmod(0o644)
