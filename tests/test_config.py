"""Tests for environment configuration."""

from robot_panel.channels import ChannelNames
from robot_panel.config import PanelConfig


class TestPanelConfig:
    def test_defaults(self):
        config = PanelConfig.from_env({})
        assert config.pin == "1234"
        assert config.session_key == "robot_control_authenticated"
        assert config.open_timeout is None
        assert config.move_velocity == 60.0

    def test_environment_overrides(self):
        config = PanelConfig.from_env({
            "PANEL_PIN": "8642",
            "PANEL_SESSION_KEY": "panel_ok",
            "PANEL_PORT": "9000",
            "ROBOT_NAMESPACE": "dsr02",
            "BRIDGE_OPEN_TIMEOUT": "5",
            "LOG_LEVEL": "debug",
            "PANEL_MAX_SESSIONS": "50",
        })
        assert config.pin == "8642"
        assert config.session_key == "panel_ok"
        assert config.port == 9000
        assert config.open_timeout == 5.0
        assert config.log_level == "DEBUG"
        assert config.max_sessions == 50

    def test_namespace_applies_to_robot_channels_only(self):
        names = ChannelNames.for_namespace("/dsr02/")
        assert names.move_joint_service == "/dsr02/motion/move_joint"
        assert names.gripper_topic == "/dsr02/gripper/position_cmd"
        assert names.script_topic == "/execute_script"
        assert names.script_result_topic == "/script_result"
