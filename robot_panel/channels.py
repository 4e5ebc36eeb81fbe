"""
Topic/Service Registry for the rosbridge link.

Binds the four channels the panel uses as one ChannelSet when the bridge
connects, and invalidates all of them together when it disconnects:
- /<ns>/motion/move_joint     (service, request/response)
- /<ns>/gripper/position_cmd  (publish, std_msgs/Int32)
- /execute_script             (publish, std_msgs/String)
- /script_result              (subscribe, std_msgs/String)
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .errors import NotConnected, RequestError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChannelNames:
    """Names and message types of the bound channels."""
    move_joint_service: str = "/dsr01/motion/move_joint"
    move_joint_type: str = "dsr_msgs2/srv/MoveJoint"
    gripper_topic: str = "/dsr01/gripper/position_cmd"
    gripper_type: str = "std_msgs/msg/Int32"
    script_topic: str = "/execute_script"
    script_type: str = "std_msgs/msg/String"
    script_result_topic: str = "/script_result"
    script_result_type: str = "std_msgs/msg/String"

    @classmethod
    def for_namespace(cls, namespace: str = "dsr01") -> 'ChannelNames':
        """Robot channels live under the robot namespace; script channels do not."""
        ns = namespace.strip("/")
        return cls(
            move_joint_service=f"/{ns}/motion/move_joint",
            gripper_topic=f"/{ns}/gripper/position_cmd",
        )


class ChannelHandle:
    """A named channel on the bridge, valid until its ChannelSet is released."""

    def __init__(self, bridge, name: str, msg_type: str):
        self._bridge = bridge
        self.name = name
        self.type = msg_type
        self.bound = True

    def invalidate(self) -> None:
        self.bound = False

    def _require_bound(self) -> None:
        if not self.bound:
            raise NotConnected()


class Service(ChannelHandle):
    """Request/response service endpoint."""

    async def call(self, args: Dict[str, Any]) -> Dict[str, Any]:
        self._require_bound()
        logger.debug(f"Calling {self.name} with {args}")
        return await self._bridge.call_service(self.name, self.type, args)


class Publisher(ChannelHandle):
    """One-way outbound topic."""

    def advertise(self) -> None:
        self._bridge.send({
            "op": "advertise",
            "id": self._bridge.next_id(f"advertise:{self.name}"),
            "topic": self.name,
            "type": self.type,
        })

    def publish(self, msg: Dict[str, Any]) -> None:
        """
        Publish a message (fire-and-forget).

        Raises:
            NotConnected: Handle no longer bound
            RequestError: The outbound queue is full and nothing was queued
        """
        self._require_bound()
        logger.debug(f"Publishing to {self.name}: {msg}")
        if not self._bridge.send({"op": "publish", "topic": self.name, "msg": msg}):
            raise RequestError(f"Send queue full, {self.name} not published")


class Subscriber(ChannelHandle):
    """One-way inbound topic. Only sees messages published after subscribing."""

    def __init__(self, bridge, name: str, msg_type: str, callback: Callable[[Any], Any]):
        super().__init__(bridge, name, msg_type)
        self.callback = callback

    def subscribe(self) -> None:
        self._bridge.send({
            "op": "subscribe",
            "id": self._bridge.next_id(f"subscribe:{self.name}"),
            "topic": self.name,
            "type": self.type,
        })

    def deliver(self, msg: Dict[str, Any]) -> None:
        if not self.bound:
            return
        try:
            self.callback(msg.get("data", ""))
        except Exception as e:
            logger.error(f"Error in {self.name} handler: {e}")


@dataclass(frozen=True)
class ChannelSet:
    """The four channel handles. Created together, invalidated together."""
    move_joint: Service
    gripper: Publisher
    script: Publisher
    script_result: Subscriber

    def handles(self):
        return (self.move_joint, self.gripper, self.script, self.script_result)


class ChannelRegistry:
    """
    Creates and releases the ChannelSet for a bridge connection.

    bind() runs once per transition into the connected state and unbind()
    once per transition out of it; the bridge is the only caller of both.
    """

    def __init__(
        self,
        names: Optional[ChannelNames] = None,
        on_script_result: Optional[Callable[[str], Any]] = None,
    ):
        """
        Initialize registry.

        Args:
            names: Channel names and types
            on_script_result: Handler for payloads on the script result topic
        """
        self.names = names or ChannelNames()
        self.on_script_result = on_script_result or (lambda payload: None)
        self._channels: Optional[ChannelSet] = None

    @property
    def channels(self) -> Optional[ChannelSet]:
        return self._channels

    def bind(self, bridge) -> ChannelSet:
        """Bind all four channels on a freshly connected bridge."""
        if self._channels is not None:
            raise RuntimeError("Channels already bound")

        names = self.names
        channels = ChannelSet(
            move_joint=Service(bridge, names.move_joint_service, names.move_joint_type),
            gripper=Publisher(bridge, names.gripper_topic, names.gripper_type),
            script=Publisher(bridge, names.script_topic, names.script_type),
            script_result=Subscriber(
                bridge,
                names.script_result_topic,
                names.script_result_type,
                self.on_script_result,
            ),
        )
        channels.gripper.advertise()
        channels.script.advertise()
        channels.script_result.subscribe()

        self._channels = channels
        logger.info("Channels bound")
        return channels

    def unbind(self) -> None:
        """Invalidate every handle. Safe to call when nothing is bound."""
        if self._channels is None:
            return
        for handle in self._channels.handles():
            handle.invalidate()
        self._channels = None
        logger.info("Channels released")

    def dispatch(self, topic: Optional[str], msg: Dict[str, Any]) -> None:
        """Route an inbound publish frame to its subscriber."""
        channels = self._channels
        if channels is None:
            return
        if topic == channels.script_result.name:
            channels.script_result.deliver(msg)
        else:
            logger.debug(f"No subscriber for {topic}")
