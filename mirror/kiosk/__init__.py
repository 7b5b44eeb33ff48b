"""
Kiosk client for the mirror voice assistant

Runs next to the display: listens for a wake phrase, records a command,
uploads it and plays the spoken answer, while polling server health and
following the push channel for responses from other sessions.

Key modules:
- config: JSON file plus MIRROR_KIOSK_* environment overrides
- voice_session: Idle/Listening/Capturing/Uploading/Speaking/Error state machine
- supervisor: Status polling with bounded retries
- transport: HTTP client and push channel listener
- wake: Wake phrase spotting over Wyoming transcription
- audio: arecord capture and aplay/pw-play playback
"""

from __future__ import annotations
