"""
Semantic workspace index for Flowcode.

WorkspaceIndexer walks the workspace and reports which files changed since the
last scan (by mtime/size fingerprint). VectorIndex embeds chunks via an
injected embed function (e.g. BedrockService.embed_texts) and answers cosine
similarity queries. Both persist under the workspace's hidden state directory.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

import numpy as np
import pathspec

logger = logging.getLogger(__name__)

EmbedFn = Callable[..., List[List[float]]]

VECTOR_STORE_FILE = "vector_store.json"
METADATA_FILE = "metadata.json"

INDEX_EXTENSIONS = {
    ".py", ".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".java", ".go", ".rs", ".rb",
    ".c", ".h", ".cpp", ".hpp", ".cs", ".md", ".json", ".yaml", ".yml", ".toml",
    ".css", ".scss", ".html", ".sh",
}
INDEX_SKIP_DIRS = {
    ".git", "node_modules", "__pycache__", ".venv", "venv", "dist", "build", "vendor", ".flowcode",
}
INDEX_SKIP_SUFFIXES = {".min.js", ".min.css", ".map", ".lock"}

# Lines where a chunk may start without severing a declaration or section
_BOUNDARY_RE = re.compile(
    r"^[ \t]*(?:"
    r"(?:export\s+)?(?:default\s+)?(?:async\s+)?(?:def|class|function|interface|type|enum|struct|impl|fn|func)\b"
    r"|(?:public|private|protected|static)\s"
    r"|@\w"
    r"|#{1,6}\s"
    r")",
    re.MULTILINE,
)


@dataclass
class FileFingerprint:
    mtime: float
    size: int

    def to_dict(self) -> Dict[str, Any]:
        return {"mtime": self.mtime, "size": self.size}


@dataclass
class Document:
    """A changed file and its chunks, ready for embedding."""
    path: str
    content: str
    chunks: List[str] = field(default_factory=list)


@dataclass
class IndexResult:
    changed_documents: List[Document] = field(default_factory=list)
    deleted_files: List[str] = field(default_factory=list)
    metadata: Dict[str, Dict[str, Any]] = field(default_factory=dict)


@dataclass
class VectorRecord:
    path: str
    chunk: str
    embedding: List[float]


@dataclass
class SearchResult:
    path: str
    chunk: str
    score: float


# ============================================================
# Chunking
# ============================================================

def _find_break(content: str, start: int, end: int, lookback: int) -> int:
    """Pick a chunk end in (start, end]: boundary line, then newline, then hard cut."""
    window_start = max(start + 1, end - lookback)
    best = -1
    for m in _BOUNDARY_RE.finditer(content, window_start, end):
        if m.start() > start:
            best = m.start()
    if best > start:
        return best
    newline = content.rfind("\n", window_start, end)
    if newline > start:
        return newline + 1
    return end


def chunk_content(content: str, chunk_size: int = 1000, overlap: int = 100, lookback: int = 200) -> List[str]:
    """Split text into overlapping chunks, preferring syntactic boundaries."""
    if not content:
        return []
    if len(content) <= chunk_size:
        return [content]
    chunks: List[str] = []
    start = 0
    while start < len(content):
        end = min(start + chunk_size, len(content))
        if end < len(content):
            end = _find_break(content, start, end, lookback)
        chunks.append(content[start:end])
        if end >= len(content):
            break
        # Always move forward, even when the overlap would exceed the chunk
        start = max(end - overlap, start + 1)
    return chunks


# ============================================================
# Workspace Indexer
# ============================================================

def _load_gitignore(root: str) -> Optional[pathspec.PathSpec]:
    gitignore_path = os.path.join(root, ".gitignore")
    if not os.path.isfile(gitignore_path):
        return None
    try:
        with open(gitignore_path, "r", encoding="utf-8", errors="replace") as f:
            return pathspec.PathSpec.from_lines("gitwildmatch", f)
    except OSError as e:
        logger.debug(f"Failed to parse .gitignore: {e}")
        return None


def _should_index(rel: str, gitignore_spec: Optional[pathspec.PathSpec] = None) -> bool:
    parts = rel.split("/")
    if any(p in INDEX_SKIP_DIRS for p in parts[:-1]):
        return False
    if any(rel.endswith(s) for s in INDEX_SKIP_SUFFIXES):
        return False
    if os.path.splitext(rel)[1].lower() not in INDEX_EXTENSIONS:
        return False
    if gitignore_spec and gitignore_spec.match_file(rel):
        return False
    return True


class WorkspaceIndexer:
    """Incremental scanner over the workspace."""

    def __init__(self, root: str, chunk_size: int = 1000, chunk_overlap: int = 100):
        self.root = os.path.abspath(root)
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def list_files(self) -> List[str]:
        """Workspace-relative posix paths of every indexable file."""
        gi = _load_gitignore(self.root)
        out: List[str] = []
        for root, dirs, files in os.walk(self.root):
            rel_root = os.path.relpath(root, self.root)
            rel_root = "" if rel_root == "." else rel_root.replace(os.sep, "/")
            kept = []
            for d in sorted(dirs):
                if d in INDEX_SKIP_DIRS:
                    continue
                rel_dir = f"{rel_root}/{d}" if rel_root else d
                if gi and gi.match_file(rel_dir + "/"):
                    continue
                kept.append(d)
            dirs[:] = kept
            for name in sorted(files):
                rel = f"{rel_root}/{name}" if rel_root else name
                if _should_index(rel, gi):
                    out.append(rel)
        return out

    def index(self, previous: Optional[Dict[str, Dict[str, Any]]] = None) -> IndexResult:
        """Compare the current scan with previous metadata.
        Returns changed documents (chunked), deleted paths, and the new metadata."""
        previous = previous or {}
        result = IndexResult()
        for rel in self.list_files():
            full = os.path.join(self.root, rel)
            try:
                st = os.stat(full)
            except OSError:
                continue
            fingerprint = FileFingerprint(mtime=st.st_mtime, size=st.st_size).to_dict()
            result.metadata[rel] = fingerprint
            if previous.get(rel) == fingerprint:
                continue
            try:
                with open(full, "r", encoding="utf-8", errors="replace") as f:
                    content = f.read()
            except OSError as e:
                logger.warning(f"Skipping unreadable file {rel}: {e}")
                result.metadata.pop(rel, None)
                continue
            result.changed_documents.append(Document(
                path=rel,
                content=content,
                chunks=chunk_content(content, self.chunk_size, self.chunk_overlap),
            ))
        result.deleted_files = sorted(set(previous) - set(result.metadata))
        logger.info(
            f"Index scan: {len(result.metadata)} files, {len(result.changed_documents)} changed, "
            f"{len(result.deleted_files)} deleted"
        )
        return result


def load_metadata(path: str) -> Dict[str, Dict[str, Any]]:
    """Load fingerprint metadata; absent or unreadable files yield an empty mapping."""
    if not os.path.isfile(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, ValueError) as e:
        logger.warning(f"Index metadata load failed: {e}")
        return {}


def save_metadata(path: str, metadata: Dict[str, Dict[str, Any]]) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(metadata, f, indent=0)
    os.replace(tmp, path)


# ============================================================
# Vector Index
# ============================================================

class VectorIndex:
    """
    In-memory vector index of {path, chunk, embedding} records.
    Persisted as a single JSON blob for incremental updates across runs.
    """

    def __init__(self, embed_fn: Optional[EmbedFn] = None):
        self.embed_fn = embed_fn
        self.records: List[VectorRecord] = []
        self.skipped_paths: List[str] = []

    def __len__(self) -> int:
        return len(self.records)

    def paths(self) -> Set[str]:
        return {r.path for r in self.records}

    def add_documents(self, documents: List[Document]) -> int:
        """Embed and store every chunk of the given documents. Returns records added.

        Paths with any chunk that came back without an embedding are listed in
        ``skipped_paths`` so callers can keep them pending for the next run.
        """
        self.skipped_paths = []
        pending = [(d.path, c) for d in documents for c in d.chunks]
        if not pending:
            return 0
        if not self.embed_fn:
            logger.debug("Vector index add skipped (no embed function)")
            self.skipped_paths = sorted({path for path, _ in pending})
            return 0
        embeddings = list(self.embed_fn([c for _, c in pending], input_type="search_document"))
        embeddings += [[]] * (len(pending) - len(embeddings))
        added = 0
        skipped: Set[str] = set()
        for (path, chunk), emb in zip(pending, embeddings):
            if emb:
                self.records.append(VectorRecord(path=path, chunk=chunk, embedding=list(emb)))
                added += 1
            else:
                skipped.add(path)
        if skipped:
            logger.warning(f"{len(pending) - added} chunk(s) came back without an embedding")
        self.skipped_paths = sorted(skipped)
        return added

    def remove_documents(self, path: str) -> int:
        """Drop every record for a path. Returns the number removed."""
        before = len(self.records)
        self.records = [r for r in self.records if r.path != path]
        return before - len(self.records)

    def search(self, query: str, k: int = 5) -> List[SearchResult]:
        """Semantic search: top-k records by cosine similarity, highest first."""
        if not self.records or not self.embed_fn:
            return []
        try:
            query_emb = self.embed_fn([query], input_type="search_query")[0]
        except Exception as e:
            logger.warning(f"Query embed failed: {e}")
            return []
        matrix = np.array([r.embedding for r in self.records], dtype=np.float64)
        q = np.array(query_emb, dtype=np.float64)
        if matrix.ndim != 2 or matrix.shape[1] != q.shape[0]:
            logger.warning("Query embedding dimension does not match index")
            return []
        norms = np.linalg.norm(matrix, axis=1)
        q_norm = np.linalg.norm(q)
        if q_norm < 1e-12:
            return []
        denom = np.where(norms < 1e-12, np.inf, norms * q_norm)
        sim = (matrix @ q) / denom
        # Stable sort keeps insertion order among equal scores
        order = np.argsort(-sim, kind="stable")[:k]
        return [
            SearchResult(path=self.records[i].path, chunk=self.records[i].chunk, score=float(sim[i]))
            for i in order
        ]

    def save(self, path: str) -> None:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        serialized = [{"path": r.path, "chunk": r.chunk, "embedding": r.embedding} for r in self.records]
        tmp = path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(serialized, f)
        os.replace(tmp, path)
        logger.info(f"Vector index saved: {len(self.records)} records")

    def load(self, path: str) -> bool:
        """Replace records from disk. A missing blob is not an error; returns False."""
        if not os.path.isfile(path):
            return False
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        self.records = [
            VectorRecord(path=d["path"], chunk=d["chunk"], embedding=d["embedding"])
            for d in data
        ]
        logger.info(f"Loaded vector index: {len(self.records)} records")
        return True
