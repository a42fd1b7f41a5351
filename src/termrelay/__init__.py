"""
termrelay - browser terminal relay with session recording and replay

Carries keystrokes and output between a terminal view and a remote SSH shell
over a JSON-framed websocket, records the output as asciicast v2, and replays
recordings with a seekable virtual clock.
"""

__version__ = "0.1.0"
__author__ = "termrelay Contributors"
__license__ = "MIT"

from termrelay.config import Config

__all__ = ["Config", "__version__"]
