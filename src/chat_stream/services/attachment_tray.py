"""Composer attachments and their upload lifecycle.

The client uploads files itself and reports each outcome. A file is
``pending`` until the upload settles, then ``attached`` or ``failed``; a
failed file goes back to ``pending`` when the user retries. Once a message
carrying attached files is submitted they are ``detached`` from the composer.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from typing import Callable

from chat_stream.application.exceptions import ConflictError, NotFoundError, ValidationError
from chat_stream.config import settings
from chat_stream.domain.entities.attachment import Attachment
from chat_stream.domain.value_objects.enums import AttachmentStatus

logger = logging.getLogger(__name__)

TrayListener = Callable[[Attachment], None]

_TRANSITIONS: dict[AttachmentStatus, frozenset[AttachmentStatus]] = {
    AttachmentStatus.PENDING: frozenset({AttachmentStatus.ATTACHED, AttachmentStatus.FAILED}),
    AttachmentStatus.FAILED: frozenset({AttachmentStatus.PENDING}),
    AttachmentStatus.ATTACHED: frozenset({AttachmentStatus.DETACHED}),
    AttachmentStatus.DETACHED: frozenset(),
}


class AttachmentTray:
    def __init__(self, on_change: TrayListener | None = None) -> None:
        self._items: dict[str, Attachment] = {}
        self._on_change = on_change

    def items(self) -> tuple[Attachment, ...]:
        return tuple(self._items.values())

    def get(self, handle: str) -> Attachment:
        attachment = self._items.get(handle)
        if attachment is None:
            raise NotFoundError(f"Attachment {handle} not found")
        return attachment

    def add(self, name: str, content_type: str, size: int | None = None) -> Attachment:
        """Register a file the client is about to upload."""
        if content_type not in settings.ATTACHMENT_TYPES:
            raise ValidationError(f"{name} is not a supported file type")
        if size is not None and size > settings.ATTACHMENT_MAX_MB * 1024 * 1024:
            raise ValidationError(
                f"{name} is too large. Maximum file size is {settings.ATTACHMENT_MAX_MB}MB"
            )
        attachment = Attachment(name=name, type=content_type, local_handle=uuid.uuid4().hex)
        self._items[attachment.key] = attachment
        self._notify(attachment)
        return attachment

    def mark_uploaded(self, handle: str, url: str) -> Attachment:
        if not url:
            raise ValidationError("Uploaded attachment needs a url")
        return self._move(handle, AttachmentStatus.ATTACHED, url=url, error=None)

    def mark_failed(self, handle: str, error: str = "Upload failed") -> Attachment:
        logger.info("Upload of attachment %s failed: %s", handle, error)
        return self._move(handle, AttachmentStatus.FAILED, error=error)

    def retry(self, handle: str) -> Attachment:
        """Put a failed upload back in flight; the client uploads the file again."""
        return self._move(handle, AttachmentStatus.PENDING, error=None)

    def remove(self, handle: str) -> None:
        self.get(handle)
        del self._items[handle]

    def ready(self) -> tuple[Attachment, ...]:
        """Attachments to send with the next message; refuses while any upload is unsettled."""
        unsettled = [a.name for a in self._items.values() if a.status != AttachmentStatus.ATTACHED]
        if unsettled:
            raise ValidationError(f"Attachments not uploaded: {', '.join(unsettled)}")
        return self.items()

    def detach(self, sent: tuple[Attachment, ...]) -> None:
        for attachment in sent:
            if attachment.key in self._items:
                self._move(attachment.key, AttachmentStatus.DETACHED)
                del self._items[attachment.key]

    def _move(self, handle: str, status: AttachmentStatus, **changes: str | None) -> Attachment:
        current = self.get(handle)
        if status not in _TRANSITIONS[current.status]:
            raise ConflictError(f"Attachment {current.name} is {current.status}, cannot become {status}")
        moved = replace(current, status=status, **changes)
        self._items[handle] = moved
        self._notify(moved)
        return moved

    def _notify(self, attachment: Attachment) -> None:
        if self._on_change is not None:
            self._on_change(attachment)
