"""
Byte source layer.

Provides the pluggable transports used by every dataset adapter:
- HTTP (default, via httpx)
- Plain user-supplied functions
- Local filesystem mirrors
- Manifest-based directory listings for object stores
"""

from scremote.ingest.base import ByteSource, FunctionByteSource, payload_to_bytes, read_payload
from scremote.ingest.http import HttpByteSource
from scremote.ingest.listing import ManifestListing
from scremote.ingest.local import LocalByteSource

__all__ = [
    "ByteSource",
    "FunctionByteSource",
    "HttpByteSource",
    "LocalByteSource",
    "ManifestListing",
    "payload_to_bytes",
    "read_payload",
]
