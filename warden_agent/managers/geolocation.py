"""
EdgeWarden Geo Resolver

ASN and Country lookups from two local MaxMind databases (geoip2).

The database files are read-only once loaded. refresh() downloads new
tar.gz archives, extracts only the .mmdb member, atomically replaces the
file on disk and swaps the readers under a lock.

A missing or corrupt database is logged and that attribute is simply
absent from lookups; lookup() never raises.

Author: EdgeWarden Project
License: GNU GPL v3
"""

import logging
import os
import shutil
import tarfile
import tempfile
import threading
from pathlib import Path
from typing import Callable, Dict, Optional

import geoip2.database
import geoip2.errors
import requests

from ..models import GeoInfo


class GeoResolver:
    """Thread-safe wrapper around the ASN and Country readers."""

    def __init__(self, config, reader_factory: Callable = geoip2.database.Reader,
                 session: Optional[requests.Session] = None):
        """
        Initialize the resolver (databases are opened by load()).

        Args:
            config: AgentConfig (geo_dir, database names and URLs, http_timeout)
            reader_factory: Callable(path) -> reader (tests inject a stub)
            session: requests session used by refresh()
        """
        self.config = config
        self.reader_factory = reader_factory
        self.session = session or requests.Session()
        self.logger = logging.getLogger(__name__)

        self._readers: Dict[str, object] = {}
        self._lock = threading.Lock()

    @property
    def loaded(self) -> Dict[str, bool]:
        with self._lock:
            return {kind: kind in self._readers for kind in ('asn', 'country')}

    def _open(self, kind: str, path: Path):
        if not path.exists():
            self.logger.warning(f"Geo database not found ({kind}): {path}")
            return None
        try:
            reader = self.reader_factory(str(path))
            self.logger.info(f"Loaded {kind} database: {path}")
            return reader
        except (OSError, ValueError, RuntimeError) as e:
            # maxminddb.InvalidDatabaseError is a RuntimeError
            self.logger.error(f"Could not load {kind} database {path}: {e}")
            return None

    def load(self):
        """(Re)open both databases, replacing the current readers."""
        new_readers = {}
        for kind, path in self.config.get_geo_paths().items():
            reader = self._open(kind, path)
            if reader is not None:
                new_readers[kind] = reader

        with self._lock:
            old_readers = self._readers
            self._readers = new_readers

        for reader in old_readers.values():
            self._close(reader)

    def close(self):
        with self._lock:
            readers = self._readers
            self._readers = {}
        for reader in readers.values():
            self._close(reader)

    def _close(self, reader):
        try:
            reader.close()
        except Exception as e:
            self.logger.debug(f"Error closing geo reader: {e}")

    def lookup(self, ip: str) -> GeoInfo:
        """Resolve ASN/Country for an IP. Unknown attributes stay None."""
        with self._lock:
            asn_reader = self._readers.get('asn')
            country_reader = self._readers.get('country')

        asn = org = country = None

        if asn_reader is not None:
            try:
                response = asn_reader.asn(ip)
                asn = response.autonomous_system_number
                org = response.autonomous_system_organization
            except (geoip2.errors.AddressNotFoundError, ValueError, AttributeError):
                pass

        if country_reader is not None:
            try:
                country = country_reader.country(ip).country.iso_code
            except (geoip2.errors.AddressNotFoundError, ValueError, AttributeError):
                pass

        return GeoInfo(ip=ip, asn=asn, org=org, country=country)

    def refresh(self) -> int:
        """
        Download fresh databases and reload.

        Kinds without a configured URL are skipped. A failed download keeps
        the current file.

        Returns:
            Number of database files replaced
        """
        urls = {'asn': self.config.geo_asn_url, 'country': self.config.geo_country_url}
        paths = self.config.get_geo_paths()

        replaced = 0
        for kind, url in urls.items():
            if not url:
                continue
            try:
                self._download_database(url, paths[kind])
                replaced += 1
            except (requests.RequestException, tarfile.TarError, OSError, ValueError) as e:
                self.logger.error(f"Geo database refresh failed ({kind}): {e}")

        if replaced:
            self.load()
            self.logger.info(f"Geo databases refreshed ({replaced} updated)")
        return replaced

    def _download_database(self, url: str, target: Path):
        target.parent.mkdir(parents=True, exist_ok=True)

        fd, archive_path = tempfile.mkstemp(suffix='.tar.gz', dir=str(target.parent))
        try:
            with os.fdopen(fd, 'wb') as archive:
                with self.session.get(url, stream=True, timeout=self.config.http_timeout) as response:
                    response.raise_for_status()
                    for chunk in response.iter_content(chunk_size=65536):
                        if chunk:
                            archive.write(chunk)

            self._extract_mmdb(archive_path, target)
        finally:
            if os.path.exists(archive_path):
                os.unlink(archive_path)

    def _extract_mmdb(self, archive_path: str, target: Path):
        with tarfile.open(archive_path, mode='r:gz') as tar:
            member = next(
                (m for m in tar.getmembers() if m.isfile() and m.name.endswith('.mmdb')),
                None
            )
            if member is None:
                raise ValueError(f"no .mmdb file in archive for {target.name}")

            # Read the member as a stream; nothing is extracted by path
            source = tar.extractfile(member)
            if source is None:
                raise ValueError(f"cannot read {member.name} from archive")

            fd, tmp_path = tempfile.mkstemp(suffix='.mmdb', dir=str(target.parent))
            try:
                with os.fdopen(fd, 'wb') as out:
                    shutil.copyfileobj(source, out)
                os.replace(tmp_path, target)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise

        self.logger.info(f"Installed {member.name} as {target}")
