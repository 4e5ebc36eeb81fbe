"""
Panel configuration from environment variables.

Environment Variables:
    PANEL_PIN: Shared passcode (default: 1234)
    PANEL_SESSION_KEY: Session flag name (default: robot_control_authenticated)
    PANEL_HOST: HTTP bind address (default: 0.0.0.0)
    PANEL_PORT: HTTP port (default: 8000)
    ROBOT_NAMESPACE: Robot topic namespace (default: dsr01)
    MOVE_VELOCITY: move_joint velocity (default: 60.0)
    MOVE_ACCELERATION: move_joint acceleration (default: 60.0)
    BRIDGE_OPEN_TIMEOUT: Handshake timeout in seconds (default: unset, no timeout)
    LOG_MAX_ENTRIES: Console lines kept (default: 500)
    PANEL_MAX_SESSIONS: Unlocked browser sessions kept (default: 1000)
    LOG_LEVEL: Logging level (default: INFO)
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass
class PanelConfig:
    pin: str = "1234"
    session_key: str = "robot_control_authenticated"
    host: str = "0.0.0.0"
    port: int = 8000
    robot_namespace: str = "dsr01"
    move_velocity: float = 60.0
    move_acceleration: float = 60.0
    open_timeout: Optional[float] = None
    log_max_entries: int = 500
    max_sessions: int = 1000
    log_level: str = "INFO"
    pin_error_delay: float = 1.5
    script_cooldown: float = 1.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'PanelConfig':
        env = os.environ if environ is None else environ

        open_timeout = env.get("BRIDGE_OPEN_TIMEOUT", "").strip()

        return cls(
            pin=env.get("PANEL_PIN", "1234"),
            session_key=env.get("PANEL_SESSION_KEY", "robot_control_authenticated"),
            host=env.get("PANEL_HOST", "0.0.0.0"),
            port=int(env.get("PANEL_PORT", "8000")),
            robot_namespace=env.get("ROBOT_NAMESPACE", "dsr01"),
            move_velocity=float(env.get("MOVE_VELOCITY", "60.0")),
            move_acceleration=float(env.get("MOVE_ACCELERATION", "60.0")),
            open_timeout=float(open_timeout) if open_timeout else None,
            log_max_entries=int(env.get("LOG_MAX_ENTRIES", "500")),
            max_sessions=int(env.get("PANEL_MAX_SESSIONS", "1000")),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )
