"""Attachment storage and content-part resolution."""

from forkchat.attachments.resolver import (
    AttachmentLimitError,
    AttachmentResolver,
    AttachmentStore,
    PdfContent,
    build_file_text_chunks,
    compress_image,
    extract_pdf,
    merge_attachment_parts,
    sniff_kind,
    validate_attachments,
)

__all__ = [
    "AttachmentLimitError",
    "AttachmentResolver",
    "AttachmentStore",
    "PdfContent",
    "build_file_text_chunks",
    "compress_image",
    "extract_pdf",
    "merge_attachment_parts",
    "sniff_kind",
    "validate_attachments",
]
