"""
Source endpoint schemas.

Contains Pydantic models for:
- Endpoint descriptors supplied by the directory (one per Pod)
- Batch descriptors reported by an endpoint's discovery response
"""

from typing import Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Endpoint(BaseModel):
    """Schema for one log endpoint the collector pulls from.

    Identity is ``target_url``; the model is frozen so a Pod's endpoint
    never changes after creation.

    Attributes:
        target_url: Base URL of the endpoint's log API
        service_name: Service the logs belong to (used in the workspace path)
        source_identifier: Tag added to every forwarded record. Defaults to
            the host of ``target_url`` (the node IP for status-service
            endpoints).

    Example:
        >>> ep = Endpoint.model_validate(
        ...     {"targetUrl": "http://10.0.0.1:8666/logs/chain-42", "serviceName": "chain-42"}
        ... )
        >>> ep.source_identifier
        '10.0.0.1'
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    target_url: str = Field(
        ...,
        alias="targetUrl",
        description="Base URL of the endpoint's log API",
        min_length=1,
    )
    service_name: str = Field(
        ...,
        alias="serviceName",
        description="Service name, used to derive the workspace directory",
        min_length=1,
    )
    source_identifier: Optional[str] = Field(
        default=None,
        alias="sourceIdentifier",
        description="Identifier attached to forwarded records",
    )

    @field_validator("target_url", "service_name")
    @classmethod
    def validate_non_empty_strings(cls, v: str, info) -> str:
        if not v or not v.strip():
            raise ValueError(f"{info.field_name} cannot be empty or whitespace")
        return v.strip()

    @field_validator("target_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        if not urlsplit(v).scheme:
            raise ValueError(f"target_url must be absolute, got '{v}'")
        return v.rstrip("/")

    @model_validator(mode="before")
    @classmethod
    def default_source_identifier(cls, data):
        if not isinstance(data, dict):
            return data
        if data.get("sourceIdentifier") or data.get("source_identifier"):
            return data
        url = data.get("targetUrl") or data.get("target_url")
        if isinstance(url, str):
            data = {**data, "sourceIdentifier": urlsplit(url.strip()).hostname}
        return data

    @property
    def host(self) -> str:
        return urlsplit(self.target_url).hostname or ""


class BatchDescriptor(BaseModel):
    """One batch as listed by ``GET targetUrl``.

    Batches are ordered by ``id``; ``batch_size`` is the number of bytes the
    endpoint has written to the batch so far.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(..., description="Batch ordinal")
    batch_size: int = Field(..., alias="batchSize", ge=0, description="Bytes in the batch")
