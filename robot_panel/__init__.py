"""
Robot Control Panel - PIN-gated web panel for a 6-axis arm over rosbridge.

This package runs next to the operator's browser and:
- Gates the panel behind a shared PIN per browser session
- Owns the single WebSocket link to rosbridge
- Sends joint moves, gripper strokes and scripts to the robot
- Streams script results back to the console
"""

__version__ = "1.0.0"
