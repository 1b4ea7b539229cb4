"""Infrastructure shared by the sync engine: async bridging, retry, ports."""

from .async_utils import gather_limited, run_sync
from .ports import LinkChecker, LocalStorage, MetadataCodec, RemoteClient, Syncer
from .retry import retry_async

__all__ = [
    "LinkChecker",
    "LocalStorage",
    "MetadataCodec",
    "RemoteClient",
    "Syncer",
    "gather_limited",
    "retry_async",
    "run_sync",
]
