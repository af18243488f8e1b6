"""
Static Reputation Service

Answers IP, BIN and blacklist reputation questions from data held in
memory: blacklist entries (card BIN, IP, email) and a geolocation
table keyed by IP address or CIDR network. The data is loaded at
startup from YAML (config/reputation.yaml) and, with the PostgreSQL
backend, from the blacklist tables.

Expired blacklist entries never match.
"""

import ipaddress
import logging
from datetime import datetime, UTC
from pathlib import Path
from typing import Iterable, Optional

import yaml

from ..schemas import (
    BINReputation,
    BlacklistEntry,
    BlacklistKind,
    GeoLocation,
    IPReputation,
    Severity,
)
from .base import ReputationService

logger = logging.getLogger("risk_engine.reputation")

# Penalty reported for a blacklisted BIN / reputation score for a blacklisted IP
SEVERITY_PENALTY = {
    Severity.LOW: 10,
    Severity.MEDIUM: 20,
    Severity.HIGH: 30,
    Severity.CRITICAL: 40,
}

SEVERITY_REPUTATION = {
    Severity.LOW: 40,
    Severity.MEDIUM: 60,
    Severity.HIGH: 80,
    Severity.CRITICAL: 100,
}


class StaticReputationService(ReputationService):
    """
    Reputation lookups over in-memory tables.

    IP addresses are malicious when an active IP blacklist entry matches
    them. BINs are high risk when an active card_bin entry is a prefix
    of the BIN.
    """

    def __init__(
        self,
        blacklist: Optional[Iterable[BlacklistEntry]] = None,
        geolocations: Optional[dict[str, GeoLocation]] = None,
    ):
        self.blacklist: list[BlacklistEntry] = list(blacklist or [])
        self._exact_geo: dict[str, GeoLocation] = {}
        self._network_geo: list[tuple[ipaddress._BaseNetwork, GeoLocation]] = []
        for key, location in (geolocations or {}).items():
            self.add_geolocation(key, location)

    # =========================================================================
    # Loading
    # =========================================================================

    @classmethod
    def from_yaml(cls, path: Path) -> "StaticReputationService":
        """
        Build from a YAML file with `blacklist` and `geolocations` keys.

        A missing file yields an empty service.
        """
        if not path.exists():
            logger.info("No reputation file at %s, starting empty", path)
            return cls()

        with open(path) as f:
            config = yaml.safe_load(f) or {}

        blacklist = [BlacklistEntry(**entry) for entry in config.get("blacklist", [])]
        geolocations = {
            key: GeoLocation(**value)
            for key, value in (config.get("geolocations") or {}).items()
        }
        logger.info(
            "Loaded %d blacklist entries and %d geolocations from %s",
            len(blacklist), len(geolocations), path,
        )
        return cls(blacklist=blacklist, geolocations=geolocations)

    def add_geolocation(self, key: str, location: GeoLocation) -> None:
        if "/" in key:
            self._network_geo.append((ipaddress.ip_network(key, strict=False), location))
        else:
            self._exact_geo[key] = location

    def add_blacklist_entries(self, entries: Iterable[BlacklistEntry]) -> None:
        self.blacklist.extend(entries)

    # =========================================================================
    # ReputationService
    # =========================================================================

    async def geolocate(self, ip_address: str) -> Optional[GeoLocation]:
        if ip_address in self._exact_geo:
            return self._exact_geo[ip_address]
        try:
            address = ipaddress.ip_address(ip_address)
        except ValueError:
            return None
        for network, location in self._network_geo:
            if address in network:
                return location
        return None

    async def ip_reputation(self, ip_address: str) -> IPReputation:
        entry = await self.blacklist_lookup(BlacklistKind.IP, ip_address)
        if entry is None:
            return IPReputation()
        return IPReputation(
            is_malicious=True,
            reputation_score=SEVERITY_REPUTATION[entry.severity],
            categories=[entry.reason] if entry.reason else [],
        )

    async def bin_reputation(self, card_bin: str) -> BINReputation:
        entry = await self.blacklist_lookup(BlacklistKind.CARD_BIN, card_bin)
        if entry is None:
            return BINReputation()
        return BINReputation(
            is_high_risk=True,
            risk_score=SEVERITY_PENALTY[entry.severity],
            bin_type=entry.reason,
        )

    async def blacklist_lookup(
        self,
        kind: BlacklistKind,
        value: str,
    ) -> Optional[BlacklistEntry]:
        """Most severe active entry matching value, if any."""
        now = datetime.now(UTC)
        needle = value.strip().lower()
        matches = [
            entry for entry in self.blacklist
            if entry.kind == kind
            and entry.is_active(now)
            and self._matches(kind, entry.value, needle)
        ]
        if not matches:
            return None
        order = list(Severity)
        return max(matches, key=lambda e: order.index(e.severity))

    @staticmethod
    def _matches(kind: BlacklistKind, pattern: str, value: str) -> bool:
        if kind == BlacklistKind.CARD_BIN:
            return value.startswith(pattern)
        if kind == BlacklistKind.EMAIL and pattern.startswith("@"):
            # Domain-wide entry
            return value.endswith(pattern)
        return value == pattern
