"""Tests for the cartesian setpoint controller."""

import logging

import numpy as np
import pytest

from stemtrack.config import ArmConfig
from stemtrack.kinematics import MockKinematics
from stemtrack.robot_status import RobotStatus
from stemtrack_mcp.controller import StemTrackController

LIMITS = ArmConfig().joint_limits()


@pytest.fixture
def solver():
    return MockKinematics()


@pytest.fixture
def controller(solver, clock):
    status = RobotStatus(8, "right", solver, clock=clock)
    return StemTrackController(status, solver, max_z_velocity=0.05, update_rate_hz=10)


class TestUpdateSetpoint:
    def test_lateral_correction_and_ramp(self, controller):
        setpoint = controller.update_setpoint([1.0, 2.0, 0.5], [0.1, -0.2], 1)
        assert setpoint == pytest.approx([0.9, 2.2, 0.505])
        assert controller.setpoint == pytest.approx([0.9, 2.2, 0.505])

    def test_hold_height(self, controller):
        setpoint = controller.update_setpoint([1.0, 2.0, 0.5], [0.0, 0.0], 0)
        assert setpoint == pytest.approx([1.0, 2.0, 0.5])

    def test_descend(self, controller):
        setpoint = controller.update_setpoint([1.0, 2.0, 0.5], [0.0, 0.0], -1)
        assert setpoint[2] == pytest.approx(0.495)

    def test_step_is_bounded_by_velocity(self, controller):
        setpoint = controller.update_setpoint([0.0, 0.0, 0.0], [0.0, 0.0], 5)
        assert setpoint[2] == pytest.approx(controller.z_step)

    def test_reconfigure_rate(self, controller):
        controller.configure(0.1, 20)
        setpoint = controller.update_setpoint([0.0, 0.0, 1.0], [0.0, 0.0], 1)
        assert setpoint[2] == pytest.approx(1.005)

    def test_non_positive_rate_rejected(self, controller):
        with pytest.raises(ValueError):
            controller.configure(0.05, 0)

    def test_short_error_is_logged_and_padded(self, controller, caplog):
        with caplog.at_level(logging.WARNING):
            setpoint = controller.update_setpoint([1.0, 2.0, 0.5], [0.1], 0)
        assert "unexpected vector length" in caplog.text
        assert setpoint == pytest.approx([0.9, 2.0, 0.5])

    def test_short_gripper_keeps_previous_setpoint(self, controller):
        controller.update_setpoint([1.0, 2.0, 0.5], [0.0, 0.0], 0)
        setpoint = controller.update_setpoint([], [0.0, 0.0], 1)
        assert setpoint == pytest.approx([1.0, 2.0, 0.5])


class TestJointReferences:
    def test_solve_stores_references(self, controller):
        controller.update_setpoint([0.4, -0.2, 0.9], [0.0, 0.0], 1)
        seed = np.zeros(8)
        assert controller.solve_joint_references(seed, LIMITS, orientation=np.array([0.0, 0.0, 0.0, 1.0]))
        assert controller.joint_refs_valid
        refs = controller.joint_refs
        assert refs[0] == pytest.approx(0.105)
        assert refs[2] == pytest.approx(-0.4)

    def test_orientation_defaults_to_current_gripper(self, controller, solver):
        controller.update_setpoint([0.4, 0.0, 0.9], [0.0, 0.0], 0)
        assert controller.solve_joint_references(np.zeros(8), LIMITS)
        assert solver.forward_calls == 1

    def test_failure_keeps_previous_references(self, controller, solver, caplog):
        controller.update_setpoint([0.4, 0.0, 0.9], [0.0, 0.0], 0)
        controller.solve_joint_references(np.zeros(8), LIMITS)
        previous = controller.joint_refs

        solver.fail_inverse = True
        controller.update_setpoint([0.5, 0.0, 0.9], [0.0, 0.0], 0)
        with caplog.at_level(logging.WARNING):
            assert not controller.solve_joint_references(np.zeros(8), LIMITS)
        assert "No IK solution" in caplog.text
        assert not controller.joint_refs_valid
        np.testing.assert_array_equal(controller.joint_refs, previous)
        assert controller.consecutive_solve_failures == 1

    def test_target_outside_limits_fails(self, controller):
        controller.update_setpoint([0.4, 0.0, 3.0], [0.0, 0.0], 0)
        assert not controller.solve_joint_references(np.zeros(8), LIMITS)
        assert controller.joint_refs.size == 0

    def test_no_orientation_when_forward_fails(self, controller, solver):
        solver.fail_forward = True
        assert not controller.solve_joint_references(np.zeros(8), LIMITS)
        assert solver.inverse_calls == 0
