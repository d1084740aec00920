from __future__ import annotations

from dataclasses import dataclass

from chat_stream.domain.value_objects.enums import AttachmentStatus


@dataclass(frozen=True, slots=True)
class Attachment:
    name: str
    type: str
    url: str | None = None
    local_handle: str | None = None
    status: AttachmentStatus = AttachmentStatus.PENDING
    error: str | None = None

    @property
    def key(self) -> str:
        return self.local_handle or self.url or self.name
