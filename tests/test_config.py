"""Tests for controller configuration."""

import pytest

from stemtrack.config import (
    ArmConfig,
    ConfigError,
    StemTrackConfig,
    SupervisorConfig,
    get_config,
    update_config,
)


class TestDefaults:
    def test_supervisor_defaults(self):
        config = SupervisorConfig()
        assert config.completion_height == 1.3
        assert config.end_of_stem_tolerance == 0.05

    def test_arm_defaults_are_consistent(self):
        arm = ArmConfig()
        assert arm.joint_count == 8
        assert len(arm.joint_minima) == 8
        assert len(arm.joint_maxima) == 8
        assert len(arm.initial_pose) == 8
        assert arm.is_handedness_known()

    def test_default_config_validates(self):
        assert StemTrackConfig().validate() == []


class TestValidation:
    def test_bad_joint_count(self):
        config = StemTrackConfig()
        config.arm.joint_count = 0
        errors = config.validate()
        assert any("joint_count" in e for e in errors)

    def test_undetermined_handedness(self):
        config = StemTrackConfig()
        config.arm.handedness = None
        assert any("handedness" in e for e in config.validate())

    def test_non_positive_rate(self):
        config = StemTrackConfig()
        config.control.update_rate_hz = 0
        assert any("update_rate_hz" in e for e in config.validate())

    def test_joint_count_must_match_joint_names(self):
        config = StemTrackConfig()
        config.arm.joint_count = 9
        config.arm.joint_minima = config.arm.joint_minima + [-1.0]
        config.arm.joint_maxima = config.arm.joint_maxima + [1.0]
        config.arm.initial_pose = config.arm.initial_pose + [0.0]
        errors = config.validate()
        assert len(errors) == 1
        assert "joint_count" in errors[0]


class TestPersistence:
    def test_save_and_load(self, tmp_path):
        config = StemTrackConfig()
        config.arm.handedness = "left"
        config.control.update_rate_hz = 25.0
        config.supervisor.completion_height = 1.1
        path = tmp_path / "stemtrack.json"
        config.save(str(path))

        loaded = StemTrackConfig.load(str(path))
        assert loaded.arm.handedness == "left"
        assert loaded.control.update_rate_hz == 25.0
        assert loaded.supervisor.completion_height == 1.1
        assert loaded.to_dict() == config.to_dict()

    def test_partial_dict_keeps_defaults(self):
        config = StemTrackConfig.from_dict({"supervisor": {"debug_state": False}})
        assert config.supervisor.debug_state is False
        assert config.supervisor.completion_height == 1.3


class TestGlobalConfig:
    def test_update_config(self):
        config = get_config()
        original = config.control.max_z_velocity
        try:
            update_config(control={"max_z_velocity": 0.02, "bogus": 1})
            assert get_config().control.max_z_velocity == 0.02
            assert not hasattr(get_config().control, "bogus")
        finally:
            config.control.max_z_velocity = original

    def test_rejected_update_leaves_config_untouched(self):
        before = get_config().to_dict()
        with pytest.raises(ConfigError) as exc_info:
            update_config(
                control={"update_rate_hz": 0, "max_z_velocity": 0.2},
                supervisor={"completion_height": 2.0},
            )
        assert any("update_rate_hz" in e for e in exc_info.value.errors)
        assert get_config().to_dict() == before

    def test_update_keeps_object_identity(self):
        config = get_config()
        control = config.control
        original = control.up_to_date_threshold
        try:
            assert update_config(control={"up_to_date_threshold": 1.5}) is config
            assert config.control is control
            assert control.up_to_date_threshold == 1.5
        finally:
            control.up_to_date_threshold = original
