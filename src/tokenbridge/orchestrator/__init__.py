"""
tokenbridge.orchestrator

Exchange orchestration package.

Responsibilities:
- Per-request state machine (verify -> compose -> issue).
"""

# Package marker.
