"""
Risk Policy Tests

Tests for policy validation, updates, versioning and YAML reloads.
"""

from pathlib import Path

import pytest
import yaml

from risk_engine.errors import SettingsValidationError
from risk_engine.policy import (
    DEFAULT_POLICY,
    BehavioralPatterns,
    DetectionPatterns,
    FactorWeights,
    PolicyManager,
    RiskPolicy,
    RiskPolicyUpdate,
    RiskThresholds,
    validate_policy,
)
from risk_engine.policy.manager import increment_patch

POLICY_FILE = Path(__file__).resolve().parent.parent / "config" / "risk_policy.yaml"

ZERO_WEIGHTS = FactorWeights(
    velocity=0, geographic=0, behavioral=0, payment=0,
    user_history=0, device=0, booking_pattern=0,
)


@pytest.fixture
def policy_file(tmp_path) -> Path:
    """Writable copy of the shipped policy file."""
    path = tmp_path / "risk_policy.yaml"
    path.write_text(POLICY_FILE.read_text())
    return path


class TestDefaults:
    """Tests for the built-in policy."""

    def test_default_thresholds(self):
        """30 / 60 / 80 / 90 bands."""
        thresholds = DEFAULT_POLICY.thresholds
        assert (thresholds.low, thresholds.medium, thresholds.high, thresholds.critical) == (30, 60, 80, 90)

    def test_default_weights_sum_to_one(self):
        """Default weights total 1.0."""
        assert DEFAULT_POLICY.weights.total == pytest.approx(1.0)

    def test_shipped_file_matches_defaults(self):
        """config/risk_policy.yaml loads into the default thresholds and weights."""
        manager = PolicyManager(policy_path=POLICY_FILE)

        assert manager.version == "1.0.0"
        assert manager.policy.thresholds == DEFAULT_POLICY.thresholds
        assert manager.policy.weights == DEFAULT_POLICY.weights


class TestValidation:
    """Tests for validate_policy."""

    @pytest.mark.parametrize("thresholds", [
        RiskThresholds(low=30, medium=30, high=80, critical=90),
        RiskThresholds(low=30, medium=60, high=95, critical=90),
        RiskThresholds(low=50, medium=40, high=80, critical=90),
    ])
    def test_thresholds_must_strictly_increase(self, thresholds):
        """Equal or descending thresholds are rejected."""
        with pytest.raises(SettingsValidationError):
            validate_policy(DEFAULT_POLICY.model_copy(update={"thresholds": thresholds}))

    def test_weights_need_a_positive_entry(self):
        """All-zero weights cannot score anything."""
        with pytest.raises(SettingsValidationError):
            validate_policy(DEFAULT_POLICY.model_copy(update={"weights": ZERO_WEIGHTS}))

    def test_unusual_hours_order(self):
        """The unusual-hour window cannot start after it ends."""
        detection = DetectionPatterns(behavioral=BehavioralPatterns(unusual_hour_start=6, unusual_hour_end=3))

        with pytest.raises(SettingsValidationError):
            validate_policy(DEFAULT_POLICY.model_copy(update={"detection": detection}))


class TestIncrementPatch:
    """Tests for version bumping."""

    @pytest.mark.parametrize("version,expected", [
        ("1.0.0", "1.0.1"),
        ("2.3.9", "2.3.10"),
        ("1.0.0-test", "1.0.1"),
        ("x", "1.0.1"),
    ])
    def test_increment(self, version, expected):
        """PATCH + 1; unparseable versions restart at 1.0.1."""
        assert increment_patch(version) == expected


class TestPolicyManager:
    """Tests for updates and reloads."""

    @pytest.mark.asyncio
    async def test_update_bumps_version(self, policy_manager):
        """A valid update swaps the policy and bumps PATCH."""
        old_hash = policy_manager.policy_hash

        policy = await policy_manager.update(RiskPolicyUpdate(
            thresholds=RiskThresholds(low=20, medium=50, high=70, critical=85),
        ))

        assert policy.version == "1.0.1"
        assert policy_manager.version == "1.0.1"
        assert policy_manager.policy.thresholds.critical == 85
        assert policy_manager.policy.weights == DEFAULT_POLICY.weights
        assert policy_manager.policy_hash != old_hash

    @pytest.mark.asyncio
    async def test_invalid_update_leaves_policy(self, policy_manager):
        """Validation failures change nothing."""
        with pytest.raises(SettingsValidationError):
            await policy_manager.update(RiskPolicyUpdate(weights=ZERO_WEIGHTS))

        assert policy_manager.version == "1.0.0"
        assert policy_manager.policy is DEFAULT_POLICY

    @pytest.mark.asyncio
    async def test_snapshot_is_stable(self, policy_manager):
        """A snapshot taken before an update keeps its values."""
        snapshot = policy_manager.snapshot()

        await policy_manager.update(RiskPolicyUpdate(description="tightened"))

        assert snapshot.version == "1.0.0"
        assert policy_manager.snapshot().description == "tightened"

    @pytest.mark.asyncio
    async def test_update_syncs_yaml(self, policy_file):
        """Updates are written back and survive a reload."""
        manager = PolicyManager(policy_path=policy_file)

        await manager.update(RiskPolicyUpdate(
            weights=FactorWeights(payment=0.5),
        ))

        on_disk = yaml.safe_load(policy_file.read_text())
        assert on_disk["version"] == "1.0.1"
        assert on_disk["weights"]["payment"] == 0.5

        fresh = PolicyManager(policy_path=policy_file)
        assert fresh.version == "1.0.1"
        assert fresh.policy.weights.payment == 0.5

    def test_reload_picks_up_changes(self, policy_file):
        """Editing the file and reloading applies the new policy."""
        manager = PolicyManager(policy_path=policy_file)
        config = yaml.safe_load(policy_file.read_text())
        config["version"] = "1.1.0"
        config["thresholds"]["critical"] = 95
        policy_file.write_text(yaml.dump(config))

        assert manager.reload_policy() is True
        assert manager.version == "1.1.0"
        assert manager.policy.thresholds.critical == 95

    def test_bad_reload_keeps_policy(self, policy_file):
        """An invalid file is rejected and the active policy stays."""
        manager = PolicyManager(policy_path=policy_file)
        before = manager.policy
        config = yaml.safe_load(policy_file.read_text())
        config["thresholds"]["low"] = 99
        policy_file.write_text(yaml.dump(config))

        assert manager.reload_policy() is False
        assert manager.policy is before

    def test_reload_without_file(self, policy_manager, tmp_path):
        """No path, or a missing file, cannot reload."""
        assert policy_manager.reload_policy() is False
        assert PolicyManager(policy_path=tmp_path / "missing.yaml").reload_policy() is False

    def test_custom_initial_policy(self):
        """An explicit policy is used when there is no file."""
        policy = RiskPolicy(version="2.0.0")
        assert PolicyManager(policy=policy).version == "2.0.0"
