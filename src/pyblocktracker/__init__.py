"""pyblocktracker - Async tracker for a blockchain node's latest block number."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyblocktracker")
except PackageNotFoundError:
    __version__ = "0+local"
from pyblocktracker._cache import TrackedValue
from pyblocktracker._ledger import ListenerHandle
from pyblocktracker._lifecycle import TrackerState
from pyblocktracker.config import TrackerConfig
from pyblocktracker.events import SyncEvent, TrackerEvent
from pyblocktracker.exceptions import (
    BlockFetchError,
    BlockTrackerConfigError,
    BlockTrackerError,
    ProviderError,
    RpcResponseError,
    RpcTransportError,
)
from pyblocktracker.provider import BlockNumberProvider, JsonRpcProvider
from pyblocktracker.tracker import BlockTracker

__all__ = [
    "__version__",
    "BlockFetchError",
    "BlockNumberProvider",
    "BlockTracker",
    "BlockTrackerConfigError",
    "BlockTrackerError",
    "JsonRpcProvider",
    "ListenerHandle",
    "ProviderError",
    "RpcResponseError",
    "RpcTransportError",
    "SyncEvent",
    "TrackedValue",
    "TrackerConfig",
    "TrackerEvent",
    "TrackerState",
]
