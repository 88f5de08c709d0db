"""Presence-aware display sleep controller.

Puts the display to sleep when the machine has been idle and nobody is
sitting in front of the camera.
"""

__version__ = "0.1.0"
