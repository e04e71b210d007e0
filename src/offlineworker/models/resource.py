from __future__ import annotations

from datetime import datetime
from typing import Literal

import httpx
from pydantic import BaseModel, ConfigDict


class Resource(BaseModel):
    """A cached response body plus the metadata needed to rebuild it."""

    url: str  # Normalised absolute URL (primary key in both stores)
    body: bytes
    status: int
    status_text: str
    headers: dict[str, str] = {}

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @classmethod
    def from_response(cls, url: str, response: httpx.Response) -> Resource:
        """Snapshot a fully read response. Repeated header names are comma-joined."""
        headers: dict[str, str] = {}
        for name, value in response.headers.multi_items():
            key = name.lower()
            headers[key] = f"{headers[key]}, {value}" if key in headers else value
        return cls(
            url=url,
            body=response.content,
            status=response.status_code,
            status_text=response.reason_phrase,
            headers=headers,
        )

    def to_response(self, request: httpx.Request | None = None) -> httpx.Response:
        """Build a fresh response. Each call yields an independent copy.

        A HEAD request gets an empty body and the stored body's length.
        """
        headers = _replayable_headers(self.headers)
        content = self.body
        if request is not None and request.method == "HEAD":
            headers["content-length"] = str(len(self.body))
            content = b""
        return httpx.Response(
            status_code=self.status,
            headers=headers,
            content=content,
            request=request,
            extensions={"reason_phrase": self.status_text.encode("ascii", errors="ignore")},
        )


def _replayable_headers(headers: dict[str, str]) -> dict[str, str]:
    # httpx has already decoded the body; stale framing headers would lie about it.
    return {
        name: value
        for name, value in headers.items()
        if name not in ("content-encoding", "content-length", "transfer-encoding")
    }


class VersionRecord(BaseModel):
    """The singleton row of the version table."""

    version: str
    timestamp: datetime


class VersionDescriptor(BaseModel):
    """The deployment's version document. Extra fields are ignored.

    A numeric ``version`` is read as its string form.
    """

    model_config = ConfigDict(coerce_numbers_to_str=True)

    version: str


class UpdateMessage(BaseModel):
    """Posted to every controlled client when a new deployment is detected."""

    model_config = ConfigDict(frozen=True)

    type: Literal["VERSION_UPDATE"] = "VERSION_UPDATE"
    message: str
