"""
tokenbridge.services

Service layer.

Responsibilities:
- Compose engine components from settings (the bridge composition root).
"""

# Package marker.
