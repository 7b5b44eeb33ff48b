"""
Mirror Assistant - voice command package for ambient displays

A smart-mirror voice assistant split into a server that resolves spoken
commands and a kiosk client that captures them.

Core modules:
- assistant: Command pipeline, intent resolution, handlers, HTTP and push surfaces
- kiosk: Voice session state machine, connection supervisor, capture and playback
- utils: Environment parsing and async helpers shared by both sides
"""

__version__ = "0.4.2"
