"""Document loaders — thin wrappers around LangChain document loaders."""

from __future__ import annotations

import logging
from pathlib import Path

from langchain_community.document_loaders import Docx2txtLoader, PyPDFLoader
from langchain_core.documents import Document

logger = logging.getLogger(__name__)

TEXT_SUFFIXES = frozenset({".txt", ".md", ".json"})


def load_pdf(path: str | Path) -> list[Document]:
    """Load a single PDF file, one document per page."""
    return PyPDFLoader(str(path)).load()


def load_docx(path: str | Path) -> list[Document]:
    """Load a single Word file."""
    return Docx2txtLoader(str(path)).load()


def load_text(path: str | Path) -> list[Document]:
    """Load a text file; undecodable bytes are replaced rather than rejected."""
    path = Path(path)
    text = path.read_text(encoding="utf-8", errors="replace")
    return [Document(page_content=text, metadata={"source": str(path)})]


def load_file(path: str | Path) -> str:
    """Extract the text of *path*, choosing a loader by file extension.

    Parameters
    ----------
    path:
        File on disk.

    Returns
    -------
    str
        Extracted text; pages are joined with blank lines.
    """
    path = Path(path)
    suffix = path.suffix.lower()

    if suffix == ".pdf":
        docs = load_pdf(path)
    elif suffix in (".docx", ".doc"):
        docs = load_docx(path)
    elif suffix in TEXT_SUFFIXES:
        docs = load_text(path)
    else:
        logger.warning("Unsupported file type %r for %s; reading as text", suffix, path.name)
        docs = load_text(path)

    return "\n\n".join(doc.page_content for doc in docs if doc.page_content)
