"""
tokenbridge.trust

Inbound trust package.

Responsibilities:
- Resolve and cache upstream issuers' trust anchors.
- Verify identity tokens against those anchors.
"""

# Package marker.
