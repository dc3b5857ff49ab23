"""
EdgeWarden Blocker

Owns the authoritative Blocked-IP table and keeps the firewall collaborator
consistent with it, idempotently.

- block(ip, reason): no-op if an entry already exists; otherwise asks the
  firewall for a deny rule and records the entry on OK or DUPLICATE. Any
  other result leaves the table untouched so the next matching event retries.
- unblock(ip): asks the firewall to drop the rule (NOT_FOUND is fine) and
  removes the entry whatever the firewall said.
- sweep(): unblocks every entry whose expiry has passed. Single-flight.

All table writes go through one writer lock, so block/unblock for the same
IP are serialized. Reads (state endpoint, heartbeat) take a separate short
lock and never wait on a slow firewall call.

Detection decisions arrive over a queue and are applied by consume() on a
dedicated thread, so a firewall outage never stalls log processing.

Author: EdgeWarden Project
License: GNU GPL v3
"""

import logging
import queue
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from ..models import BlockDecision, BlockedIpEntry, FirewallResult, utc_now
from ..utils.validators import validate_ip


class Blocker:
    """
    Blocked-IP table plus firewall synchronization.

    Attributes:
        config: Live AgentConfig (block_minutes read per block)
        firewall: Firewall collaborator (add_deny / remove_deny)
        geo: Optional GeoResolver used to annotate block log lines
    """

    def __init__(self, config, firewall, geo=None, clock: Callable[[], datetime] = utc_now):
        self.config = config
        self.firewall = firewall
        self.geo = geo
        self.clock = clock
        self.logger = logging.getLogger(__name__)

        self._table: Dict[str, BlockedIpEntry] = {}
        self._table_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._sweep_lock = threading.Lock()

    def is_blocked(self, ip: str) -> bool:
        with self._table_lock:
            return ip in self._table

    def get_entry(self, ip: str) -> Optional[BlockedIpEntry]:
        with self._table_lock:
            return self._table.get(ip)

    def block(self, ip: str, reason: str) -> bool:
        """
        Block an IP for block_minutes.

        Returns:
            True if the IP is blocked after the call (new or existing entry),
            False if the firewall refused and nothing was recorded

        Raises:
            ValueError: If ip is not a valid address
        """
        if not validate_ip(ip):
            raise ValueError(f"invalid IP address: {ip!r}")

        with self._write_lock:
            if self.is_blocked(ip):
                self.logger.debug(f"{ip} already blocked, ignoring ({reason})")
                return True

            now = self.clock()
            expires_at = now + timedelta(minutes=self.config.block_minutes)

            result = self.firewall.add_deny(ip)
            if not result.succeeded:
                self.logger.error(f"Firewall refused block of {ip} ({reason}), will retry on next event")
                return False

            entry = BlockedIpEntry(ip=ip, reason=reason, blocked_at=now, expires_at=expires_at)
            with self._table_lock:
                self._table[ip] = entry

        origin = self.geo.lookup(ip).describe() if self.geo is not None else "unknown origin"
        self.logger.warning(
            f"BLOCKED {ip} reason={reason} until={expires_at.isoformat()} [{origin}]"
            + (" (rule already present)" if result is FirewallResult.DUPLICATE else "")
        )
        return True

    def unblock(self, ip: str) -> FirewallResult:
        """
        Remove the firewall rule and the local entry for an IP.

        The entry is removed even if the firewall call fails.

        Raises:
            ValueError: If ip is not a valid address
        """
        if not validate_ip(ip):
            raise ValueError(f"invalid IP address: {ip!r}")

        with self._write_lock:
            return self._remove_locked(ip, "unblocked")

    def _remove_locked(self, ip: str, action: str) -> FirewallResult:
        result = self.firewall.remove_deny(ip)
        if not result.succeeded:
            self.logger.error(f"Firewall removal failed for {ip}, dropping local entry anyway")

        with self._table_lock:
            entry = self._table.pop(ip, None)

        if entry is not None:
            self.logger.warning(f"{action.upper()} {ip} (was: {entry.reason})")
        else:
            self.logger.info(f"{ip} was not blocked locally ({result.value})")
        return result

    def sweep(self) -> int:
        """
        Unblock every entry whose expiry time has passed.

        A sweep already in progress makes this call return immediately.

        Returns:
            Number of entries removed
        """
        if not self._sweep_lock.acquire(blocking=False):
            self.logger.debug("Sweep already running, skipping")
            return 0

        try:
            now = self.clock()
            with self._table_lock:
                expired = [ip for ip, entry in self._table.items() if entry.is_expired(now)]

            removed = 0
            for ip in expired:
                with self._write_lock:
                    entry = self.get_entry(ip)
                    # Re-checked under the writer lock: an unblock may have won
                    if entry is None or not entry.is_expired(now):
                        continue
                    self._remove_locked(ip, "expired")
                    removed += 1

            if removed:
                self.logger.info(f"Expiry sweep removed {removed} block(s)")
            return removed
        finally:
            self._sweep_lock.release()

    def entries(self) -> List[Tuple[str, BlockedIpEntry]]:
        """Snapshot of the table as (ip, entry) pairs, oldest block first."""
        with self._table_lock:
            items = list(self._table.items())
        return sorted(items, key=lambda item: item[1].blocked_at)

    def __len__(self) -> int:
        with self._table_lock:
            return len(self._table)

    def consume(self, decisions: "queue.Queue[BlockDecision]", stop_event: threading.Event,
                poll_timeout: float = 0.5):
        """
        Apply detection decisions until stop_event is set.

        Intended as a thread target. Errors on one decision are logged and
        the loop continues.
        """
        while not stop_event.is_set():
            try:
                decision = decisions.get(timeout=poll_timeout)
            except queue.Empty:
                continue

            try:
                self.block(decision.ip, decision.reason)
            except Exception as e:
                self.logger.error(f"Failed to apply block decision for {decision.ip}: {e}")
            finally:
                decisions.task_done()
