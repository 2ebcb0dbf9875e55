"""Filesystem document loader.

Walks a codebase root and returns one ``Document`` per readable text file,
skipping ignored directories, lock files and anything that is not valid
UTF-8.  Paths are root-relative POSIX strings and the result is sorted, so
repeated loads of an unchanged tree are identical.
"""
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import FrozenSet, Iterable, List

from .schemas import Document

logger = logging.getLogger(__name__)

DEFAULT_IGNORED_DIRS: FrozenSet[str] = frozenset({
    "target", ".git", "venv", ".venv", "__pycache__", ".sqlx", "node_modules",
})

DEFAULT_IGNORED_FILES: FrozenSet[str] = frozenset({
    ".gitignore", "Cargo.lock", "yarn.lock", "package-lock.json",
    "debug_log.txt", "Cargo.toml", "Dockerfile", ".env",
})

# Language detection from file extension
_EXT_TO_LANG: dict[str, str] = {
    ".rs": "rust",
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".go": "go",
    ".java": "java",
    ".c": "c",
    ".cpp": "cpp",
    ".h": "c++",
    ".md": "markdown",
    ".toml": "toml",
    ".json": "json",
    ".sql": "sql",
}


def detect_language(file_path: str) -> str:
    """Detect language from file extension."""
    return _EXT_TO_LANG.get(Path(file_path).suffix.lower(), "text")


@dataclass(frozen=True)
class IgnorePolicy:
    """Directory names and file names excluded from loading."""

    dirs: FrozenSet[str] = DEFAULT_IGNORED_DIRS
    files: FrozenSet[str] = DEFAULT_IGNORED_FILES

    @classmethod
    def with_extras(cls, dirs: Iterable[str] = (), files: Iterable[str] = ()) -> "IgnorePolicy":
        return cls(
            dirs=DEFAULT_IGNORED_DIRS | frozenset(dirs),
            files=DEFAULT_IGNORED_FILES | frozenset(files),
        )


def load_documents(root: str | Path, ignore: IgnorePolicy = IgnorePolicy()) -> List[Document]:
    """Load every non-ignored UTF-8 text file under *root*.

    Raises:
        NotADirectoryError: if *root* is not a directory.
    """
    root_path = Path(root)
    if not root_path.is_dir():
        raise NotADirectoryError(f"Not a directory: {root_path}")

    documents: List[Document] = []
    skipped = 0
    for dirpath, dirnames, filenames in os.walk(root_path):
        dirnames[:] = sorted(d for d in dirnames if d not in ignore.dirs)
        for name in sorted(filenames):
            if name in ignore.files:
                continue
            path = Path(dirpath) / name
            if not path.is_file():
                continue
            try:
                content = path.read_text(encoding="utf-8")
            except (UnicodeDecodeError, OSError):
                # Binary or unreadable: not part of the text corpus.
                skipped += 1
                continue
            rel = path.relative_to(root_path).as_posix()
            documents.append(Document(path=rel, content=content, language=detect_language(rel)))

    documents.sort(key=lambda d: d.path)
    logger.info(
        "[loader] Loaded %d documents from %s (skipped %d unreadable)",
        len(documents), root_path, skipped,
    )
    return documents
