"""Attachment storage and conversion of stored files into content parts."""

from __future__ import annotations

import base64
import io
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

import structlog
from PIL import Image
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from forkchat.models.config import AttachmentConfig
from forkchat.models.message import (
    AttachmentKind,
    AttachmentMeta,
    ContentPart,
    ImagePart,
    TextPart,
    Turn,
)

_TEXT_EXTENSIONS = re.compile(
    r"\.(txt|md|csv|json|js|ts|py|html?|xml|ya?ml|sql|log|toml|ini|rst)$", re.IGNORECASE
)


class AttachmentLimitError(ValueError):
    """Raised when attachments exceed the configured count or total size."""


def sniff_kind(mime: str, name: str) -> AttachmentKind:
    """Classify an upload by MIME type, falling back to its file extension."""
    if mime.startswith("image/"):
        return "image"
    if mime == "application/pdf" or name.lower().endswith(".pdf"):
        return "pdf"
    if mime.startswith("text/") or _TEXT_EXTENSIONS.search(name):
        return "text"
    return "other"


def build_file_text_chunks(name: str, content: str, max_chars: int = 4_800) -> list[str]:
    """Split ``content`` into chunks of at most ``max_chars``, each headed by the file name."""
    header = f"--- file: {name} ---\n"
    return [
        f"{header}\n{content[i : i + max_chars]}" for i in range(0, len(content), max_chars)
    ]


def validate_attachments(sizes: Sequence[int], config: AttachmentConfig) -> None:
    """
    Raises:
        AttachmentLimitError: If there are too many attachments or they are too large together.
    """
    if len(sizes) > config.max_attachments:
        raise AttachmentLimitError(
            f"At most {config.max_attachments} attachments per message, got {len(sizes)}"
        )
    total = sum(sizes)
    if total > config.max_total_bytes:
        raise AttachmentLimitError(
            f"Attachments total {total} bytes, limit is {config.max_total_bytes}"
        )


def compress_image(data: bytes, max_width: int = 1_024, quality: int = 80) -> bytes:
    """
    Scale an image down to at most ``max_width`` pixels wide and re-encode it as JPEG.

    Narrower images keep their size but are still re-encoded.

    Raises:
        OSError: If Pillow cannot decode ``data`` (``PIL.UnidentifiedImageError``).
    """
    with Image.open(io.BytesIO(data)) as img:
        scale = min(1.0, max_width / img.width)
        size = (max(1, round(img.width * scale)), max(1, round(img.height * scale)))
        out = img.convert("RGB")
        if out.size != size:
            out = out.resize(size, Image.Resampling.LANCZOS)
        buf = io.BytesIO()
        out.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


@dataclass
class PdfContent:
    """Text and fallback images pulled out of a PDF."""

    text: str
    page_images: list[bytes] = field(default_factory=list)
    """Embedded images of pages that have no text layer."""


def extract_pdf(data: bytes) -> PdfContent:
    """
    Extract page text, each page headed ``[PDF Page n]``.

    Raises:
        PdfReadError: If ``data`` is not a readable PDF.
    """
    reader = PdfReader(io.BytesIO(data))
    text = ""
    images: list[bytes] = []
    for number, page in enumerate(reader.pages, start=1):
        page_text = (page.extract_text() or "").strip()
        if page_text:
            text += f"\n\n[PDF Page {number}]\n{page_text}"
        else:
            images.extend(image.data for image in page.images)
    return PdfContent(text=text.strip(), page_images=images)


class AttachmentStore:
    """Blobs on disk under ``<storage_dir>/<message_id>/<attachment_id>``."""

    def __init__(self, config: AttachmentConfig) -> None:
        root = config.storage_dir or "~/.forkchat/attachments"
        self._root = Path(root).expanduser()

    def _path(self, message_id: str, attachment_id: str) -> Path:
        return self._root / message_id / attachment_id

    def put(self, message_id: str, attachment_id: str, data: bytes) -> str:
        """Write a blob and return its key (``"{message_id}:{attachment_id}"``)."""
        path = self._path(message_id, attachment_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return f"{message_id}:{attachment_id}"

    def get(self, message_id: str, attachment_id: str) -> bytes | None:
        path = self._path(message_id, attachment_id)
        if not path.exists():
            return None
        return path.read_bytes()


class AttachmentResolver:
    """
    Turns stored attachment references into provider content parts.

    Runs one layer above the context builder: its output is merged into the
    newest user turn with :func:`merge_attachment_parts`.
    """

    def __init__(self, store: AttachmentStore, config: AttachmentConfig) -> None:
        self._store = store
        self._config = config
        self._logger = structlog.get_logger("forkchat.attachments")

    def add(self, message_id: str, attachment_id: str, name: str, mime: str, data: bytes) -> AttachmentMeta:
        """
        Store a new upload and describe it.

        Images are shrunk to ``image_max_width`` and stored as JPEG; an image
        Pillow cannot decode is stored as uploaded. ``size`` is always the
        size of the upload.
        """
        kind = sniff_kind(mime, name)
        size = len(data)
        if kind == "image":
            try:
                data = compress_image(data, self._config.image_max_width, self._config.image_quality)
                mime = "image/jpeg"
            except OSError as exc:
                self._logger.warning("image_not_compressed", name=name, error=str(exc))
        blob_key = self._store.put(message_id, attachment_id, data)
        preview = _data_url(mime, data) if kind == "image" else None
        return AttachmentMeta(
            id=attachment_id,
            name=name,
            size=size,
            mime=mime or "application/octet-stream",
            kind=kind,
            blob_key=blob_key,
            preview_data_url=preview,
        )

    async def resolve_attachment_parts(
        self, message_id: str, meta: AttachmentMeta
    ) -> list[ContentPart]:
        """
        Content parts for one attachment. A missing blob yields no parts.

        Images become base64 data URLs and text is chunked. PDFs contribute
        their page text, chunked like text, plus images for pages without a
        text layer. Anything else is replaced by a short notice so the model
        knows a file was skipped.
        """
        data = self._store.get(message_id, meta.id)  # noqa: ASYNC240
        if data is None:
            self._logger.warning("attachment_blob_missing", message_id=message_id, attachment_id=meta.id)
            return []
        if meta.kind == "image":
            return [ImagePart.from_url(_data_url(meta.mime, data))]
        if meta.kind == "text":
            return self._text_parts(meta.name, data.decode("utf-8", errors="replace"))
        if meta.kind == "pdf":
            return self._pdf_parts(meta, data)
        return [_skipped_notice(meta)]

    def _text_parts(self, name: str, text: str) -> list[ContentPart]:
        return [
            TextPart(text=chunk)
            for chunk in build_file_text_chunks(name, text, self._config.chunk_chars)
        ]

    def _pdf_parts(self, meta: AttachmentMeta, data: bytes) -> list[ContentPart]:
        try:
            pdf = extract_pdf(data)
        except PdfReadError as exc:
            self._logger.warning("pdf_unreadable", name=meta.name, error=str(exc))
            return [_skipped_notice(meta)]
        parts = self._text_parts(meta.name, pdf.text)
        for raw in pdf.page_images:
            try:
                jpeg = compress_image(raw, self._config.image_max_width, self._config.image_quality)
            except OSError as exc:
                self._logger.warning("pdf_page_image_skipped", name=meta.name, error=str(exc))
                continue
            parts.append(ImagePart.from_url(_data_url("image/jpeg", jpeg)))
        self._logger.debug(
            "pdf_resolved", name=meta.name, chars=len(pdf.text), images=len(pdf.page_images)
        )
        return parts

    async def resolve_message_parts(
        self, message_id: str, attachments: Sequence[AttachmentMeta], *, images: bool = True
    ) -> list[ContentPart]:
        """All parts for a message's attachments, dropping images when ``images`` is False."""
        parts: list[ContentPart] = []
        for meta in attachments:
            for part in await self.resolve_attachment_parts(message_id, meta):
                if isinstance(part, ImagePart) and not images:
                    continue
                parts.append(part)
        return parts


def _data_url(mime: str, data: bytes) -> str:
    return f"data:{mime or 'application/octet-stream'};base64,{base64.b64encode(data).decode('ascii')}"


def _skipped_notice(meta: AttachmentMeta) -> TextPart:
    return TextPart(
        text=f"Attachment {meta.name} ({meta.mime}) is not supported for context and was skipped."
    )


def merge_attachment_parts(
    turns: list[Turn], message_id: str, parts: Sequence[ContentPart]
) -> list[Turn]:
    """
    Return ``turns`` with the turn for ``message_id`` expanded into a part list.

    The turn's own text comes first, followed by ``parts``. Turns are left as
    plain text when ``parts`` is empty or no turn carries ``message_id``.
    """
    if not parts:
        return turns
    out: list[Turn] = []
    for turn in turns:
        if turn.message_id == message_id:
            content: list[ContentPart] = []
            if turn.text():
                content.append(TextPart(text=turn.text()))
            content.extend(parts)
            turn = turn.model_copy(update={"content": content})
        out.append(turn)
    return out
