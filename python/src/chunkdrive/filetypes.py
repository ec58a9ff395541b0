"""Filename extension to file type category mapping."""

_DOCUMENT_EXTENSIONS = frozenset(
    {
        "pdf", "doc", "docx", "txt", "xls", "xlsx", "csv", "rtf", "ods", "ppt",
        "odp", "md", "html", "htm", "epub", "pages", "fig", "psd", "ai", "indd",
        "xd", "sketch", "afdesign", "afphoto",
    }
)
_IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "bmp", "svg", "webp"})
_VIDEO_EXTENSIONS = frozenset({"mp4", "avi", "mov", "mkv", "webm"})
_AUDIO_EXTENSIONS = frozenset({"mp3", "wav", "ogg", "flac"})


def get_extension(name: str) -> str:
    """Return the lowercased text after the last dot, or "" if there is none."""
    base, dot, ext = name.rpartition(".")
    if not dot or not base:
        return ""
    return ext.lower()


def get_file_type(name: str) -> tuple[str, str]:
    """Derive ``(type, extension)`` for a filename.

    >>> get_file_type("report.PDF")
    ('document', 'pdf')
    >>> get_file_type("README")
    ('other', '')
    """
    ext = get_extension(name)
    if ext in _DOCUMENT_EXTENSIONS:
        return "document", ext
    if ext in _IMAGE_EXTENSIONS:
        return "image", ext
    if ext in _VIDEO_EXTENSIONS:
        return "video", ext
    if ext in _AUDIO_EXTENSIONS:
        return "audio", ext
    return "other", ext
