"""
tokenbridge.issuance

Outbound token package.

Responsibilities:
- Compose outbound claims under the reserved-claim policy.
- Serialize and sign outbound tokens.
- Publish the bridge's public key set.
"""

# Package marker.
