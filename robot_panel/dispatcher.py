"""
Command Dispatcher for arm, gripper and script commands.

Execute Movement is a two-step sequence: the move_joint service call, then,
only if it succeeded, the gripper publish. Run Script is a single
fire-and-forget publish; its results come back through the Result Logger.

At most one operation of each kind is in flight. The in-flight flags are
what the UI reflects as disabled buttons.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Sequence

from .bridge import BridgeConnection
from .channels import ChannelSet
from .errors import InputError, NotConnected, OperationInProgress, RequestError
from .message import GripperCommand, MoveCommand, ScriptSubmission
from .notify import Notifier, log_notifier
from .result_log import ResultLogger

logger = logging.getLogger(__name__)


class CommandDispatcher:
    """
    Sends operator commands over a connected bridge.

    Script results are not correlated with submissions: one operator, one
    script in flight at a time.
    """

    def __init__(
        self,
        bridge: BridgeConnection,
        result_log: ResultLogger,
        notify: Optional[Notifier] = None,
        velocity: float = 60.0,
        acceleration: float = 60.0,
        script_cooldown: float = 1.0,
    ):
        """
        Initialize dispatcher.

        Args:
            bridge: The shared bridge connection (read-only here)
            result_log: Console for info lines
            notify: Toast callback (message, level)
            velocity: move_joint velocity
            acceleration: move_joint acceleration
            script_cooldown: Seconds before another script may be submitted
        """
        self.bridge = bridge
        self.result_log = result_log
        self.notify = notify or log_notifier
        self.velocity = velocity
        self.acceleration = acceleration
        self.script_cooldown = script_cooldown

        self._movement_in_flight = False
        self._script_in_flight = False
        self._script_timer: Optional[asyncio.TimerHandle] = None

    @property
    def movement_in_flight(self) -> bool:
        return self._movement_in_flight

    @property
    def script_in_flight(self) -> bool:
        return self._script_in_flight

    def status(self) -> Dict[str, bool]:
        return {
            "movement_in_flight": self._movement_in_flight,
            "script_in_flight": self._script_in_flight,
        }

    def _require_channels(self) -> ChannelSet:
        channels = self.bridge.channels
        if not self.bridge.connected or channels is None:
            self.notify("Not connected to robot", "error")
            raise NotConnected()
        return channels

    async def execute_movement(self, joints: Sequence[Any], stroke: Any) -> Dict[str, Any]:
        """
        Move the arm, then set the gripper.

        Args:
            joints: Six raw joint values (degrees); unparseable values become 0
            stroke: Gripper stroke 0 (open) to 700 (closed)

        Returns:
            The move_joint response values

        Raises:
            NotConnected: Bridge not connected
            OperationInProgress: A movement is already executing
            InputError: Wrong number of joints or unparseable stroke
            RequestError: move_joint failed (gripper not commanded), or the
                gripper command could not be queued
        """
        channels = self._require_channels()
        if self._movement_in_flight:
            raise OperationInProgress("Movement already executing")

        try:
            command = MoveCommand.from_inputs(joints, self.velocity, self.acceleration)
            gripper = GripperCommand.from_input(stroke)
        except InputError as e:
            self.notify(e.message, "error")
            raise

        self._movement_in_flight = True
        try:
            logger.info(f"MoveJoint to {list(command.positions)}, gripper={gripper.stroke}")
            try:
                result = await channels.move_joint.call(command.to_request())
            except RequestError as e:
                logger.error(f"MoveJoint error: {e}")
                self.notify("Execution failed", "error")
                raise

            # Arm reached position: now the gripper
            try:
                channels.gripper.publish(gripper.to_message())
            except NotConnected:
                self.notify("Not connected to robot", "error")
                raise
            except RequestError as e:
                logger.error(f"Gripper publish error: {e}")
                self.notify("Execution failed", "error")
                raise
            self.notify("Command executed", "success")
            return result
        finally:
            self._movement_in_flight = False

    def run_script(self, text: Any) -> ScriptSubmission:
        """
        Submit a script to the robot-side runtime.

        Returns immediately after publishing; results arrive on the result
        topic.

        Raises:
            NotConnected: Bridge not connected
            InputError: Script empty or whitespace only
            OperationInProgress: Submitted again within the cooldown
            RequestError: The send queue is full; nothing was published
        """
        channels = self._require_channels()
        try:
            submission = ScriptSubmission.from_input(text)
        except InputError as e:
            self.notify(e.message, "error")
            raise
        if self._script_in_flight:
            raise OperationInProgress("Script already running")

        self._script_in_flight = True
        self.result_log.info("Executing script...")
        try:
            channels.script.publish(submission.to_message())
        except RequestError as e:
            self._script_in_flight = False
            logger.error(f"Script publish error: {e}")
            self.result_log.info(f"Script not submitted: {e.message}")
            self.notify("Script submission failed", "error")
            raise
        logger.info(f"Script submitted ({len(submission.text)} chars)")

        loop = asyncio.get_running_loop()
        self._script_timer = loop.call_later(self.script_cooldown, self._release_script)
        return submission

    def _release_script(self) -> None:
        self._script_in_flight = False
        self._script_timer = None
