"""
Policy-scoped session keys for Kernel smart accounts.

An owner mints a session key restricted by a call policy, hands the agent a
secret-free approval artifact, and can revoke the session at any time.
"""

__version__ = "0.1.0"
