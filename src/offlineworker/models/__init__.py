from __future__ import annotations

from offlineworker.models.resource import (
    Resource,
    UpdateMessage,
    VersionDescriptor,
    VersionRecord,
)

__all__ = [
    "Resource",
    "VersionRecord",
    "VersionDescriptor",
    "UpdateMessage",
]
