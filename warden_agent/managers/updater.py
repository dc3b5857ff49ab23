"""
EdgeWarden Self-Updater

Keeps the agent binary current while guaranteeing only verified artifacts
ever run.

check():
    GET update_manifest_url -> {version, url|downloadUrl, signature}
    A manifest whose version string differs from the running one is an
    update (plain inequality, no semantic versioning).

install(manifest):
    1. download the artifact to a temp file next to binary_path
    2. verify the base64 RSA PKCS#1 v1.5 / SHA-256 signature against the
       trusted PEM public key
    3. only then chmod 755, os.replace() over binary_path and restart

Any verification problem (unreadable key, non-RSA key, bad base64, wrong
signature) aborts before step 3: the temp file is deleted, the installed
binary is untouched and no restart happens.

Author: EdgeWarden Project
License: GNU GPL v3
"""

import base64
import binascii
import logging
import os
import shlex
import subprocess
import tempfile
from pathlib import Path
from typing import Callable, Optional

import requests
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from ..exceptions import SignatureError, UpdateError
from ..models import VersionManifest


RESTART_TIMEOUT = 30


def verify_signature(data: bytes, signature_b64: str, public_key_pem: bytes):
    """
    Verify an RSA-SHA256 signature over data.

    Raises:
        SignatureError: If the key, the signature encoding or the signature
            itself is invalid
    """
    try:
        public_key = serialization.load_pem_public_key(public_key_pem)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise SignatureError(f"cannot load public key: {e}") from e

    if not isinstance(public_key, rsa.RSAPublicKey):
        raise SignatureError("public key is not an RSA key")

    try:
        signature = base64.b64decode(signature_b64, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise SignatureError(f"signature is not valid base64: {e}") from e

    if not signature:
        raise SignatureError("signature is empty")

    try:
        public_key.verify(signature, data, padding.PKCS1v15(), hashes.SHA256())
    except InvalidSignature as e:
        raise SignatureError("signature does not match artifact") from e


def run_restart_command(command: str):
    """Ask the process supervisor to restart the agent."""
    logger = logging.getLogger(__name__)
    try:
        result = subprocess.run(shlex.split(command), capture_output=True,
                                text=True, timeout=RESTART_TIMEOUT)
    except (OSError, ValueError, subprocess.TimeoutExpired) as e:
        logger.error(f"Restart command failed: {e}")
        return
    if result.returncode != 0:
        logger.error(f"Restart command exited {result.returncode}: {result.stderr.strip()}")


class Updater:
    """
    Manifest check, verified download and binary swap.

    Attributes:
        state: AgentState (config and current version)
        restarter: Callable(command) invoked after a successful swap
    """

    def __init__(self, state, session: Optional[requests.Session] = None,
                 restarter: Callable[[str], None] = run_restart_command):
        self.state = state
        self.session = session or requests.Session()
        self.restarter = restarter
        self.logger = logging.getLogger(__name__)

    @property
    def config(self):
        return self.state.config

    def check(self) -> Optional[VersionManifest]:
        """
        Fetch the version manifest.

        Returns:
            The manifest if it names a different version, otherwise None
            (also None on any network or format error)
        """
        url = self.config.update_manifest_url
        self.state.mark_update_check()

        try:
            response = self.session.get(url, timeout=self.config.http_timeout)
            response.raise_for_status()
            manifest = VersionManifest.from_dict(response.json())
        except requests.RequestException as e:
            self.logger.error(f"Update check against {url} failed: {e}")
            return None
        except ValueError as e:
            self.logger.error(f"Invalid update manifest from {url}: {e}")
            return None

        if manifest.version == self.state.current_version:
            self.logger.debug(f"Agent is up to date ({manifest.version})")
            return None

        self.logger.info(f"Update available: {self.state.current_version} -> {manifest.version}")
        return manifest

    def install(self, manifest: VersionManifest) -> bool:
        """
        Download, verify and install an update, then restart.

        Returns:
            True if the binary was replaced and a restart was requested
        """
        binary_path = Path(self.config.binary_path)
        tmp_path = None

        try:
            tmp_path = self._download(manifest.download_url, binary_path.parent)
            self._verify(tmp_path, manifest.signature)

            os.chmod(tmp_path, 0o755)
            os.replace(tmp_path, binary_path)
            tmp_path = None
        except SignatureError as e:
            self.logger.error(f"Update {manifest.version} REJECTED, signature verification failed: {e}")
            return False
        except UpdateError as e:
            self.logger.error(f"Update {manifest.version} failed: {e}")
            return False
        except OSError as e:
            self.logger.error(f"Could not install update {manifest.version}: {e}")
            return False
        finally:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)

        self.logger.warning(f"Installed agent {manifest.version} at {binary_path}, restarting")
        self.restarter(self.config.restart_command)
        return True

    def check_and_install(self) -> bool:
        """One scheduled update cycle. Returns True if an update was installed."""
        manifest = self.check()
        if manifest is None:
            return False
        return self.install(manifest)

    def _download(self, url: str, directory: Path) -> str:
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix='.edgewarden-update-', dir=str(directory))

        try:
            with os.fdopen(fd, 'wb') as out:
                with self.session.get(url, stream=True, timeout=self.config.http_timeout) as response:
                    response.raise_for_status()
                    for chunk in response.iter_content(chunk_size=65536):
                        if chunk:
                            out.write(chunk)
        except requests.RequestException as e:
            os.unlink(tmp_path)
            raise UpdateError(f"download of {url} failed: {e}") from e
        except OSError:
            os.unlink(tmp_path)
            raise

        return tmp_path

    def _verify(self, artifact_path: str, signature_b64: str):
        try:
            public_key_pem = Path(self.config.public_key_path).read_bytes()
        except OSError as e:
            raise SignatureError(f"cannot read public key {self.config.public_key_path}: {e}") from e

        with open(artifact_path, 'rb') as f:
            data = f.read()

        verify_signature(data, signature_b64, public_key_pem)
        self.logger.info("Update signature verified")
