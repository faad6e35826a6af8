"""Static extension tables used for classification and heuristic matching."""

from typing import Dict, List, NamedTuple, Optional


FILE_TYPE_MAP: Dict[str, str] = {
    # Documents
    'pdf': 'document', 'doc': 'document', 'docx': 'document', 'txt': 'document',
    'md': 'document', 'rtf': 'document', 'odt': 'document',
    # Spreadsheets
    'xls': 'spreadsheet', 'xlsx': 'spreadsheet', 'numbers': 'spreadsheet',
    'csv': 'data',
    # Images
    'jpg': 'image', 'jpeg': 'image', 'png': 'image', 'gif': 'image', 'webp': 'image',
    'svg': 'image', 'heic': 'image', 'raw': 'image', 'tiff': 'image',
    # Code
    'js': 'code', 'ts': 'code', 'py': 'code', 'java': 'code', 'html': 'code',
    'css': 'code', 'jsx': 'code', 'tsx': 'code', 'json': 'code',
    # Archives
    'zip': 'archive', 'rar': 'archive', '7z': 'archive', 'tar': 'archive', 'gz': 'archive',
    # Audio
    'mp3': 'audio', 'wav': 'audio', 'flac': 'audio', 'aac': 'audio', 'm4a': 'audio',
    # Video
    'mp4': 'video', 'mov': 'video', 'avi': 'video', 'mkv': 'video', 'webm': 'video',
}


class ExtensionHint(NamedTuple):
    """Type and folder keywords suggested by a file extension."""
    file_type: str
    keywords: List[str]


# Fallback hints used by heuristic matching when no rule matches.
EXTENSION_HINTS: Dict[str, ExtensionHint] = {
    'pdf': ExtensionHint('document', ['document', 'reference', 'manual']),
    'doc': ExtensionHint('document', ['document', 'word']),
    'docx': ExtensionHint('document', ['document', 'word']),
    'txt': ExtensionHint('document', ['note', 'text']),
    'md': ExtensionHint('document', ['documentation', 'readme']),
    'xls': ExtensionHint('spreadsheet', ['finance', 'data', 'report']),
    'xlsx': ExtensionHint('spreadsheet', ['finance', 'data', 'report']),
    'csv': ExtensionHint('data', ['data', 'export', 'import']),
    'jpg': ExtensionHint('image', ['photo', 'image', 'media']),
    'jpeg': ExtensionHint('image', ['photo', 'image', 'media']),
    'png': ExtensionHint('image', ['image', 'screenshot', 'graphic']),
    'gif': ExtensionHint('image', ['image', 'animation']),
    'js': ExtensionHint('code', ['development', 'script', 'code']),
    'ts': ExtensionHint('code', ['development', 'typescript', 'code']),
    'py': ExtensionHint('code', ['development', 'python', 'script']),
    'zip': ExtensionHint('archive', ['archive', 'backup', 'compressed']),
    'rar': ExtensionHint('archive', ['archive', 'compressed']),
    'mp3': ExtensionHint('audio', ['music', 'audio', 'podcast']),
    'mp4': ExtensionHint('video', ['video', 'media', 'recording']),
}


def normalize_extension(extension: Optional[str]) -> str:
    """Lowercase an extension and strip a leading dot."""
    if not extension:
        return ""
    return extension.strip().lower().lstrip('.')


def get_file_type(extension: Optional[str]) -> str:
    """Map an extension to its type category; unknown extensions are "other"."""
    return FILE_TYPE_MAP.get(normalize_extension(extension), 'other')


def get_extension_hint(extension: Optional[str]) -> Optional[ExtensionHint]:
    return EXTENSION_HINTS.get(normalize_extension(extension))
