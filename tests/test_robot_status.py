"""Tests for the robot telemetry cache."""

import logging

import numpy as np
import pytest

from stemtrack.kinematics import MockKinematics
from stemtrack.robot_status import RobotStatus

ARM = [0.0, -0.5, 0.0, -1.2, 0.0, 0.6, 0.0]


@pytest.fixture
def solver():
    return MockKinematics()


@pytest.fixture
def status(solver, clock):
    return RobotStatus(8, "right", solver, up_to_date_threshold=0.5, clock=clock)


class TestConfiguration:
    def test_joint_names_right(self, status):
        names = status.joint_names
        assert len(names) == 8
        assert names[0] == "torso_joint"
        assert names[1] == "shoulder_yaw_joint_right"
        assert names[-1] == "wrist_yaw_joint_right"

    def test_joint_names_left(self, solver):
        status = RobotStatus(8, "left", solver)
        assert status.joint_names[4] == "elbow_pitch_joint_left"

    def test_self_check(self, status):
        assert status.self_check()

    def test_zero_joints_is_inconsistent(self, solver):
        status = RobotStatus(0, "right", solver)
        assert not status.self_check()
        before = status.joint_status()
        assert not status.update_torso([0.3])
        np.testing.assert_array_equal(status.joint_status(), before)

    def test_unknown_handedness_is_inconsistent(self, solver, caplog):
        with caplog.at_level(logging.ERROR):
            status = RobotStatus(8, None, solver)
        assert "left or right arm" in caplog.text
        assert not status.self_check()
        assert not status.update_arm(ARM)
        np.testing.assert_array_equal(status.joint_status(), np.zeros(8))


class TestUpdates:
    def test_torso_goes_to_index_zero(self, status):
        assert status.update_torso([0.25, 99.0])
        q = status.joint_status()
        assert q[0] == 0.25
        assert np.all(q[1:] == 0.0)

    def test_arm_goes_to_indices_one_to_seven(self, status):
        assert status.update_arm(ARM)
        q = status.joint_status()
        assert q[0] == 0.0
        np.testing.assert_array_equal(q[1:], ARM)

    def test_short_arm_message_is_rejected(self, status):
        assert not status.update_arm([0.1, 0.2])
        np.testing.assert_array_equal(status.joint_status(), np.zeros(8))

    def test_empty_torso_message_is_rejected(self, status):
        assert not status.update_torso([])
        assert status.last_update_time is None


class TestFreshness:
    def test_not_fresh_before_any_update(self, status):
        assert not status.is_fresh(0.5)
        assert status.time_since_last_update() == float("inf")

    def test_fresh_after_update_then_stale(self, status, clock):
        status.update_torso([0.1])
        assert status.is_fresh(0.5)
        clock.advance(0.3)
        assert status.is_fresh(0.5)
        clock.advance(0.2)
        assert not status.is_fresh(0.5)

    def test_up_to_date_uses_configured_threshold(self, status, clock):
        status.update_arm(ARM)
        clock.advance(1.0)
        assert not status.is_up_to_date()
        status.set_up_to_date_threshold(2.0)
        assert status.is_up_to_date()

    def test_snapshot_is_a_copy(self, status, clock):
        status.update_torso([0.1])
        snap = status.snapshot()
        status.update_torso([0.2])
        assert snap.joints[0] == 0.1
        assert snap.fresh
        assert snap.age == 0.0


class TestGripper:
    def test_gripper_position(self, status):
        status.update_torso([0.1])
        status.update_arm(ARM)
        np.testing.assert_allclose(status.gripper_position(), [0.4, -0.25, 0.9])
        assert status.is_gripper_position_valid()

    def test_gripper_frame_has_orientation(self, status):
        frame = status.gripper_frame()
        assert frame.orientation.shape == (4,)

    def test_solver_failure_degrades_to_empty(self, status, solver, caplog):
        solver.fail_forward = True
        with caplog.at_level(logging.WARNING):
            xyz = status.gripper_position()
        assert xyz.size == 0
        assert not status.is_gripper_position_valid()
        assert "forward kinematics" in caplog.text
        assert all(not r.getMessage().startswith("Warning") for r in caplog.records)

    def test_solver_exception_degrades_to_none(self, status, solver, monkeypatch):
        def boom(joints):
            raise RuntimeError("chain not loaded")
        monkeypatch.setattr(solver, "forward", boom)
        assert status.gripper_frame() is None


class TestReachedPosition:
    def test_reached(self, status):
        status.update_arm(ARM)
        refs = [0.005] + ARM
        assert status.reached_position(refs, tolerance=0.01)

    def test_not_reached(self, status):
        refs = [0.0] + ARM
        assert not status.reached_position(refs, tolerance=0.01)

    def test_size_mismatch_is_not_reached(self, status):
        assert not status.reached_position([0.0, 0.0], tolerance=1.0)
