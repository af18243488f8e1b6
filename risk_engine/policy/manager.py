"""
Risk Policy Manager

Owns the active RiskPolicy:
- Loads it from YAML at startup (falls back to DEFAULT_POLICY)
- Hot-reloads it on request
- Validates and applies updates, bumping the PATCH version
- Keeps the YAML file in sync so updates survive restarts

Every analysis takes a snapshot of the active policy when it starts, so
an update never changes thresholds halfway through a scoring run.
"""

import asyncio
import hashlib
import json
import logging
import re
from pathlib import Path
from typing import Optional

import yaml

from ..errors import SettingsValidationError
from .rules import DEFAULT_POLICY, RiskPolicy, RiskPolicyUpdate, RiskThresholds, FactorWeights

logger = logging.getLogger("risk_engine.policy")


def validate_thresholds(thresholds: RiskThresholds) -> None:
    """
    Validate threshold configuration.

    Ensures low < medium < high < critical.
    """
    ordered = [thresholds.low, thresholds.medium, thresholds.high, thresholds.critical]
    if any(a >= b for a, b in zip(ordered, ordered[1:])):
        raise SettingsValidationError(
            "Risk thresholds must be in ascending order "
            f"(low={thresholds.low}, medium={thresholds.medium}, "
            f"high={thresholds.high}, critical={thresholds.critical})"
        )


def validate_weights(weights: FactorWeights) -> None:
    """Weights must be non-negative with at least one positive."""
    if weights.total <= 0:
        raise SettingsValidationError("At least one factor weight must be positive")


def validate_policy(policy: RiskPolicy) -> None:
    validate_thresholds(policy.thresholds)
    validate_weights(policy.weights)
    hours = policy.detection.behavioral
    if hours.unusual_hour_start > hours.unusual_hour_end:
        raise SettingsValidationError(
            f"unusual_hour_start ({hours.unusual_hour_start}) "
            f"must not be after unusual_hour_end ({hours.unusual_hour_end})"
        )


def increment_patch(version: str) -> str:
    """1.2.3 -> 1.2.4; anything unparseable restarts at 1.0.1."""
    match = re.match(r'^(\d+)\.(\d+)\.(\d+)$', version)
    if not match:
        return "1.0.1"
    major, minor, patch = int(match.group(1)), int(match.group(2)), int(match.group(3))
    return f"{major}.{minor}.{patch + 1}"


class PolicyManager:
    """
    Holds the active risk policy.

    Reads of `policy` are lock-free; updates and reloads swap in a new
    immutable instance under a lock.
    """

    def __init__(
        self,
        policy: Optional[RiskPolicy] = None,
        policy_path: Optional[Path] = None,
    ):
        """
        Initialize policy manager.

        Args:
            policy: Initial policy (if None, uses default)
            policy_path: Path to YAML policy file (optional)
        """
        self.policy = policy or DEFAULT_POLICY
        self.policy_path = policy_path
        self.policy_hash = self._compute_hash()
        self._lock = asyncio.Lock()

        if policy_path and policy_path.exists():
            self.reload_policy()

    def _compute_hash(self) -> str:
        """Compute hash of current policy for audit."""
        policy_json = self.policy.model_dump_json()
        return hashlib.sha256(policy_json.encode()).hexdigest()[:16]

    @property
    def version(self) -> str:
        return self.policy.version

    def snapshot(self) -> RiskPolicy:
        """The policy an analysis should use from start to finish."""
        return self.policy

    def reload_policy(self) -> bool:
        """
        Reload policy from YAML file.

        Returns:
            True if reload successful
        """
        if not self.policy_path or not self.policy_path.exists():
            return False

        try:
            with open(self.policy_path) as f:
                config = yaml.safe_load(f) or {}

            policy = RiskPolicy(**config)
            validate_policy(policy)
        except Exception as e:
            # Keep the existing policy
            logger.error("Policy reload failed: %s", e)
            return False

        self.policy = policy
        self.policy_hash = self._compute_hash()
        logger.info("Loaded risk policy %s (hash %s)", policy.version, self.policy_hash)
        return True

    async def update(self, update: RiskPolicyUpdate) -> RiskPolicy:
        """
        Apply a validated update.

        Raises:
            SettingsValidationError: thresholds not strictly increasing
                or weights invalid. The active policy is unchanged.
        """
        async with self._lock:
            current = self.policy
            changes: dict = {"version": increment_patch(current.version)}
            if update.thresholds is not None:
                changes["thresholds"] = update.thresholds
            if update.weights is not None:
                changes["weights"] = update.weights
            if update.detection is not None:
                changes["detection"] = update.detection
            if update.description is not None:
                changes["description"] = update.description

            candidate = current.model_copy(update=changes)
            validate_policy(candidate)

            self.policy = candidate
            self.policy_hash = self._compute_hash()
            self._sync_to_yaml(candidate)

        logger.info(
            "Risk policy updated %s -> %s (hash %s)",
            current.version, candidate.version, self.policy_hash,
        )
        return candidate

    def _sync_to_yaml(self, policy: RiskPolicy) -> None:
        """Sync policy to YAML file."""
        if not self.policy_path:
            return

        policy_dict = json.loads(policy.model_dump_json())
        try:
            with open(self.policy_path, 'w') as f:
                yaml.dump(policy_dict, f, default_flow_style=False, sort_keys=False)
        except OSError as e:
            logger.warning("Could not write policy file %s: %s", self.policy_path, e)
