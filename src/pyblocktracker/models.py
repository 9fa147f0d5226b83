"""Pydantic models for the JSON-RPC exchange with a node."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class JsonRpcRequest(BaseModel):
    """A JSON-RPC 2.0 request.

    ``skip_cache`` is serialized as ``skipCache`` and only sent when set;
    caching middlewares in front of the node use it to bypass their cache.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    jsonrpc: Literal["2.0"] = "2.0"
    id: int | str
    method: str
    params: list[Any] = Field(default_factory=list)
    skip_cache: bool | None = Field(default=None, alias="skipCache")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class JsonRpcErrorBody(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    code: int | None = None
    message: str = ""
    data: Any = None


class JsonRpcResponse(BaseModel):
    """A JSON-RPC 2.0 response carrying either ``result`` or ``error``."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    jsonrpc: str = "2.0"
    id: int | str | None = None
    result: Any = None
    error: JsonRpcErrorBody | None = None

    @model_validator(mode="before")
    @classmethod
    def _require_result_or_error(cls, values: Any) -> Any:
        if isinstance(values, dict) and "result" not in values and "error" not in values:
            raise ValueError("JSON-RPC response has neither result nor error")
        return values
