"""
tokenbridge.signing

Signing package.

Responsibilities:
- Define the signing backend capability (`sign`, `describe_key`).
- Wrap backends with retries, timeouts and a cached public key (`Signer`).
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Backends live in `signing.local` (in-process key) and `signing.kms` (remote key).
