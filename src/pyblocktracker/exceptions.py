"""Custom exception hierarchy for pyblocktracker."""

from __future__ import annotations

import traceback


class BlockTrackerError(Exception):
    """Base exception for all pyblocktracker errors."""


class BlockTrackerConfigError(BlockTrackerError):
    """Invalid or missing configuration."""


class BlockFetchError(BlockTrackerError):
    """The poll loop could not update the latest block.

    The original provider failure is kept as ``__cause__`` and its
    traceback (or message) is embedded in the error message so that
    ``error`` listeners get a self-describing value.
    """

    @classmethod
    def from_cause(cls, cause: BaseException) -> BlockFetchError:
        detail = "".join(traceback.format_exception(cause)).rstrip() or repr(cause)
        error = cls(f"BlockTracker - encountered an error while attempting to update latest block:\n{detail}")
        error.__cause__ = cause
        return error


class ProviderError(BlockTrackerError):
    """Failure reported by a block number provider."""


class RpcTransportError(ProviderError):
    """HTTP-level failure (network, non-200, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        url: str = "",
    ) -> None:
        self.status_code = status_code
        self.url = url
        super().__init__(message)


class RpcResponseError(ProviderError):
    """The node answered with a JSON-RPC error payload."""

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        data: object = None,
    ) -> None:
        self.code = code
        self.data = data
        super().__init__(message)
