"""
Approval Codec

Portable, secret-free encoding of an installed session validator.
"""

from .codec import ApprovalCodec, deserialize, get_approval_codec, serialize
from .models import ARTIFACT_FORMAT_VERSION, ARTIFACT_PREFIX, ApprovalArtifact

__all__ = [
    "ApprovalCodec",
    "ApprovalArtifact",
    "ARTIFACT_FORMAT_VERSION",
    "ARTIFACT_PREFIX",
    "get_approval_codec",
    "serialize",
    "deserialize",
]
