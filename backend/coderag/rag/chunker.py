"""Symbol-aware chunking for the indexing pipeline.

Splits a loaded document into bounded chunks suitable for embedding:

* code is split at top-level symbol boundaries (functions, classes, impl
  blocks, ...), module-level code in between becomes ``block`` chunks;
* Markdown is split at headings, then at paragraph boundaries;
* any span over the line/token budget is split at blank lines, and when no
  blank line is available within the budget, with a fixed-size sliding
  window that overlaps the previous window by ``overlap_lines``;
* a single line over the token budget (minified JS, one-line JSON) is cut
  into overlapping character windows.

Symbol extraction uses AST parsing where available (Python stdlib ``ast``,
tree-sitter for JS/TS/Java/Go) with transparent fallback to regex when
parsing fails or libraries are not installed.

Chunk content is the exact slice of the document between ``start_byte`` and
``end_byte`` so a chunk's fingerprint only changes when its own text does.
"""
import ast
import logging
import math
import re
from dataclasses import dataclass
from typing import List, Optional

from coderag.config import ChunkingSettings
from coderag.errors import ChunkingError

from .schemas import ChunkMetadata, Document

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
MAX_CONTROL_CHAR_RATIO = 0.1
# Character windows over an over-long line overlap by 1/10 of the window.
LONG_LINE_OVERLAP_DIVISOR = 10


@dataclass(frozen=True)
class CodeChunk:
    """A single chunk of a document ready for fingerprinting and embedding."""

    content: str
    file_path: str
    start_line: int  # 1-based, inclusive
    end_line: int    # 1-based, inclusive
    start_byte: int
    end_byte: int    # exclusive
    symbol_name: str = ""
    symbol_type: str = ""  # function | class | section | block
    language: str = ""

    @property
    def token_estimate(self) -> int:
        return estimate_tokens(self.content)

    def to_metadata(self) -> ChunkMetadata:
        return ChunkMetadata(
            source_path=self.file_path,
            start_line=self.start_line,
            end_line=self.end_line,
            start_byte=self.start_byte,
            end_byte=self.end_byte,
            symbol_name=self.symbol_name,
            symbol_type=self.symbol_type,
            language=self.language,
        )


def estimate_tokens(text: str) -> int:
    """Cheap token estimate (~4 characters per token)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def chunk_document(
    document: Document,
    settings: Optional[ChunkingSettings] = None,
) -> List[CodeChunk]:
    """Split *document* into chunks.

    Raises:
        ChunkingError: if the content looks binary or malformed.  No partial
            chunk list is ever returned.
    """
    settings = settings or ChunkingSettings()
    _reject_binary(document)

    if not document.content.strip():
        return []

    lines = document.content.splitlines(keepends=True)
    offsets = _line_offsets(lines)

    if document.language == "markdown":
        spans = _markdown_sections(lines)
    else:
        spans = _code_spans(lines, document.language)

    splitter = _SpanSplitter(lines, offsets, document, settings)
    chunks: List[CodeChunk] = []
    for span in spans:
        chunks.extend(splitter.split(span))

    logger.debug(
        "[chunker] %s: %d lines -> %d chunks", document.path, len(lines), len(chunks),
    )
    return chunks


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------

_ALLOWED_CONTROL = {"\t", "\n", "\r", "\f", "\v"}


def _reject_binary(document: Document) -> None:
    content = document.content
    if "\x00" in content:
        raise ChunkingError(document.path, "content contains NUL bytes")
    if not content:
        return
    suspicious = sum(
        1 for ch in content
        if ch == "\ufffd" or (ord(ch) < 32 and ch not in _ALLOWED_CONTROL)
    )
    if suspicious / len(content) > MAX_CONTROL_CHAR_RATIO:
        raise ChunkingError(
            document.path,
            f"{suspicious} of {len(content)} characters are control/replacement characters",
        )


def _line_offsets(lines: List[str]) -> List[int]:
    """Byte offset of the start of each line, plus the total length."""
    offsets = [0]
    for line in lines:
        offsets.append(offsets[-1] + len(line.encode("utf-8")))
    return offsets


# ---------------------------------------------------------------------------
# Spans: line ranges [start, end) to be chunked
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class _Span:
    start: int
    end: int
    name: str = ""
    kind: str = "block"


def _code_spans(lines: List[str], language: str) -> List[_Span]:
    """Symbols plus the uncovered gaps between them, in file order."""
    symbols = _normalise_symbols(_extract_symbols(lines, language), len(lines))
    if not symbols:
        return [_Span(0, len(lines))]

    spans: List[_Span] = []
    cursor = 0
    for sym in symbols:
        if sym.start > cursor:
            spans.append(_Span(cursor, sym.start))
        spans.append(sym)
        cursor = sym.end
    if cursor < len(lines):
        spans.append(_Span(cursor, len(lines)))
    return spans


def _normalise_symbols(symbols: list[dict], n_lines: int) -> List[_Span]:
    """Sort symbols and clip them so they never overlap or run past EOF."""
    result: List[_Span] = []
    cursor = 0
    for sym in sorted(symbols, key=lambda s: (s["start"], s["end"])):
        start = max(sym["start"], cursor)
        end = min(sym["end"], n_lines)
        if end <= start:
            continue
        result.append(_Span(start, end, sym["name"], sym["type"]))
        cursor = end
    return result


_HEADING = re.compile(r"^#{1,6}\s+(.*?)\s*#*\s*$")
_FENCE = re.compile(r"^\s*(```|~~~)")


def _markdown_sections(lines: List[str]) -> List[_Span]:
    """Split Markdown at ATX headings, ignoring ``#`` lines inside code fences."""
    headings: list[tuple[int, str]] = []
    in_fence = False
    for i, line in enumerate(lines):
        if _FENCE.match(line):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        m = _HEADING.match(line.rstrip("\r\n"))
        if m:
            headings.append((i, m.group(1)))

    if not headings:
        return [_Span(0, len(lines))]

    spans: List[_Span] = []
    if headings[0][0] > 0:
        spans.append(_Span(0, headings[0][0]))
    for idx, (start, title) in enumerate(headings):
        end = headings[idx + 1][0] if idx + 1 < len(headings) else len(lines)
        spans.append(_Span(start, end, title, "section"))
    return spans


# ---------------------------------------------------------------------------
# Budget enforcement
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class _Piece:
    """Line range ``[start, end)``; with char bounds, a window inside one line."""

    start: int
    end: int
    char_start: Optional[int] = None
    char_end: Optional[int] = None


class _SpanSplitter:
    """Turns spans into chunks that respect the line and token budget."""

    def __init__(
        self,
        lines: List[str],
        offsets: List[int],
        document: Document,
        settings: ChunkingSettings,
    ) -> None:
        self._lines = lines
        self._offsets = offsets
        self._doc = document
        self._settings = settings

    def split(self, span: _Span) -> List[CodeChunk]:
        start, end = self._trim(span.start, span.end)
        if start >= end:
            return []
        if self._fits(start, end):
            return [self._make_chunk(start, end, span.name, span.kind)]

        chunks: List[CodeChunk] = []
        for piece in self._split_oversized(start, end):
            name = f"{span.name} (part {len(chunks) + 1})" if span.name else ""
            if piece.char_start is not None:
                chunk = self._make_window_chunk(piece, name, span.kind)
                if chunk.content.strip():
                    chunks.append(chunk)
                continue
            s, e = self._trim(piece.start, piece.end)
            if s < e:
                chunks.append(self._make_chunk(s, e, name, span.kind))
        return chunks

    # ------------------------------------------------------------------

    def _split_oversized(self, start: int, end: int) -> List[_Piece]:
        """Cut ``[start, end)`` into budget-sized pieces.

        Prefers the last blank line inside the budget (leaving at least
        ``min_chunk_lines`` lines in the piece); falls back to a sliding
        window overlapping by ``overlap_lines``, capped at half the window.
        A line that alone exceeds the token budget is cut into character
        windows.  The final remainder is always emitted, however small.
        """
        min_lines = self._settings.min_chunk_lines
        max_chars = self._settings.max_tokens * CHARS_PER_TOKEN
        pieces: List[_Piece] = []
        cursor = start

        while cursor < end:
            if len(self._lines[cursor]) > max_chars:
                pieces.extend(self._line_windows(cursor, max_chars))
                cursor += 1
                continue

            limit = self._max_end(cursor, end)
            if limit >= end:
                pieces.append(_Piece(cursor, end))
                break

            cut = self._last_blank_line(cursor + min_lines, limit)
            if cut is not None:
                pieces.append(_Piece(cursor, cut))
                cursor = cut
                continue

            # No structural boundary within budget: sliding window.
            pieces.append(_Piece(cursor, limit))
            overlap = min(self._settings.overlap_lines, (limit - cursor) // 2)
            cursor = max(limit - overlap, cursor + 1)

        return pieces

    def _line_windows(self, idx: int, max_chars: int) -> List[_Piece]:
        """Overlapping character windows over the single line *idx*."""
        length = len(self._lines[idx])
        step = max_chars - max_chars // LONG_LINE_OVERLAP_DIVISOR
        windows: List[_Piece] = []
        pos = 0
        while True:
            stop = min(pos + max_chars, length)
            windows.append(_Piece(idx, idx + 1, pos, stop))
            if stop >= length:
                return windows
            pos += step

    def _max_end(self, start: int, end: int) -> int:
        """Largest exclusive end index from *start* that fits the budget.

        Always advances by at least one line; lines over the token budget
        never reach here.
        """
        max_lines = self._settings.max_lines
        max_chars = self._settings.max_tokens * CHARS_PER_TOKEN
        chars = 0
        idx = start
        while idx < end and idx - start < max_lines:
            chars += len(self._lines[idx])
            if chars > max_chars and idx > start:
                break
            idx += 1
        return max(idx, start + 1)

    def _last_blank_line(self, lo: int, hi: int) -> Optional[int]:
        """Index of the last blank line in ``[lo, hi)``, as an exclusive cut."""
        for idx in range(hi - 1, lo - 1, -1):
            if not self._lines[idx].strip():
                return idx + 1
        return None

    def _fits(self, start: int, end: int) -> bool:
        if end - start > self._settings.max_lines:
            return False
        text_len = self._offsets[end] - self._offsets[start]
        # Byte length bounds char length from above; only count chars when close.
        if text_len <= self._settings.max_tokens * CHARS_PER_TOKEN:
            return True
        return estimate_tokens("".join(self._lines[start:end])) <= self._settings.max_tokens

    def _trim(self, start: int, end: int) -> tuple[int, int]:
        """Drop leading and trailing blank lines."""
        while start < end and not self._lines[start].strip():
            start += 1
        while end > start and not self._lines[end - 1].strip():
            end -= 1
        return start, end

    def _make_window_chunk(self, piece: _Piece, name: str, kind: str) -> CodeChunk:
        line = self._lines[piece.start]
        text = line[piece.char_start:piece.char_end]
        start_byte = self._offsets[piece.start] + len(line[:piece.char_start].encode("utf-8"))
        return CodeChunk(
            content=text,
            file_path=self._doc.path,
            start_line=piece.start + 1,
            end_line=piece.start + 1,
            start_byte=start_byte,
            end_byte=start_byte + len(text.encode("utf-8")),
            symbol_name=name,
            symbol_type=kind,
            language=self._doc.language,
        )

    def _make_chunk(self, start: int, end: int, name: str, kind: str) -> CodeChunk:
        return CodeChunk(
            content="".join(self._lines[start:end]),
            file_path=self._doc.path,
            start_line=start + 1,
            end_line=end,
            start_byte=self._offsets[start],
            end_byte=self._offsets[end],
            symbol_name=name,
            symbol_type=kind,
            language=self._doc.language,
        )


# ---------------------------------------------------------------------------
# Tree-sitter lazy loading
# ---------------------------------------------------------------------------

_TS_AVAILABLE: bool | None = None  # None = not yet checked
_TS_PARSERS: dict = {}


def _get_ts_parser(language_key: str):
    """Return a cached tree-sitter ``Parser`` for *language_key*, or ``None``.

    Supported keys: ``javascript``, ``typescript``, ``java``, ``go``.  On
    first ``ImportError`` the global ``_TS_AVAILABLE`` flag is set to
    ``False`` so subsequent calls short-circuit immediately.
    """
    global _TS_AVAILABLE

    if _TS_AVAILABLE is False:
        return None

    if language_key in _TS_PARSERS:
        return _TS_PARSERS[language_key]

    try:
        from tree_sitter import Language, Parser

        if language_key == "javascript":
            import tree_sitter_javascript as ts_js
            lang_obj = Language(ts_js.language())
        elif language_key == "typescript":
            import tree_sitter_typescript as ts_ts
            lang_obj = Language(ts_ts.language_typescript())
        elif language_key == "java":
            import tree_sitter_java as ts_java
            lang_obj = Language(ts_java.language())
        elif language_key == "go":
            import tree_sitter_go as ts_go
            lang_obj = Language(ts_go.language())
        else:
            return None

        parser = Parser(lang_obj)
        _TS_PARSERS[language_key] = parser
        _TS_AVAILABLE = True
        return parser

    except ImportError as exc:
        logger.debug("tree-sitter not available for %s: %s", language_key, exc)
        _TS_AVAILABLE = False
        return None


# ---------------------------------------------------------------------------
# AST-based symbol extraction
# ---------------------------------------------------------------------------

def _extract_python_symbols_ast(lines: list[str]) -> list[dict]:
    """Extract top-level Python symbols using the stdlib ``ast`` module.

    Returns ``[]`` on ``SyntaxError`` so the caller can fall back to regex.
    """
    try:
        tree = ast.parse("".join(lines))
    except (SyntaxError, ValueError):
        return []

    symbols: list[dict] = []
    for node in ast.iter_child_nodes(tree):
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            start = node.lineno - 1
            if node.decorator_list:
                start = node.decorator_list[0].lineno - 1
            symbols.append({
                "name": node.name,
                "type": "class" if isinstance(node, ast.ClassDef) else "function",
                "start": start,
                "end": node.end_lineno,  # 1-based inclusive == 0-based exclusive
            })
    return symbols


_TS_JS_DECLARATIONS = {
    "function_declaration": "function",
    "generator_function_declaration": "function",
    "class_declaration": "class",
    "abstract_class_declaration": "class",
    "interface_declaration": "class",
    "type_alias_declaration": "class",
    "enum_declaration": "class",
}


def _extract_ts_js_symbols_ast(lines: list[str], language_key: str) -> list[dict]:
    """Extract JS/TS symbols using tree-sitter."""
    parser = _get_ts_parser(language_key)
    if parser is None:
        return []

    root = parser.parse("".join(lines).encode("utf-8")).root_node
    symbols: list[dict] = []

    for node in root.children:
        actual = node
        if node.type == "export_statement":
            inner = [
                c for c in node.children
                if c.type in _TS_JS_DECLARATIONS or c.type == "lexical_declaration"
            ]
            if not inner:
                continue
            actual = inner[0]

        sym = _ts_node_to_symbol(actual, node)
        if sym:
            symbols.append(sym)

    return symbols


def _ts_node_to_symbol(actual, outer) -> dict | None:
    """Convert a tree-sitter node to a symbol dict, or return ``None``."""
    start = outer.start_point[0]
    end = outer.end_point[0] + 1

    sym_type = _TS_JS_DECLARATIONS.get(actual.type)
    if sym_type:
        name_node = actual.child_by_field_name("name")
        if name_node:
            return {"name": name_node.text.decode(), "type": sym_type, "start": start, "end": end}

    elif actual.type == "lexical_declaration":
        # const foo = async (...) => { ... }
        for child in actual.children:
            if child.type == "variable_declarator":
                name_node = child.child_by_field_name("name")
                value_node = child.child_by_field_name("value")
                if name_node and value_node and value_node.type in ("arrow_function", "function"):
                    return {"name": name_node.text.decode(), "type": "function", "start": start, "end": end}

    return None


def _extract_java_symbols_ast(lines: list[str]) -> list[dict]:
    """Extract Java type declarations using tree-sitter."""
    parser = _get_ts_parser("java")
    if parser is None:
        return []

    root = parser.parse("".join(lines).encode("utf-8")).root_node
    symbols: list[dict] = []
    for node in root.children:
        if node.type in (
            "class_declaration",
            "interface_declaration",
            "enum_declaration",
            "annotation_type_declaration",
            "record_declaration",
        ):
            name_node = node.child_by_field_name("name")
            if name_node:
                symbols.append({
                    "name": name_node.text.decode(),
                    "type": "class",
                    "start": node.start_point[0],
                    "end": node.end_point[0] + 1,
                })
    return symbols


def _extract_go_symbols_ast(lines: list[str]) -> list[dict]:
    """Extract Go functions, methods and type declarations using tree-sitter."""
    parser = _get_ts_parser("go")
    if parser is None:
        return []

    root = parser.parse("".join(lines).encode("utf-8")).root_node
    symbols: list[dict] = []
    for node in root.children:
        if node.type in ("function_declaration", "method_declaration"):
            name_node = node.child_by_field_name("name")
            if name_node:
                symbols.append({
                    "name": name_node.text.decode(),
                    "type": "function",
                    "start": node.start_point[0],
                    "end": node.end_point[0] + 1,
                })
        elif node.type == "type_declaration":
            spec = next((c for c in node.children if c.type == "type_spec"), None)
            name_node = spec.child_by_field_name("name") if spec else None
            if name_node:
                symbols.append({
                    "name": name_node.text.decode(),
                    "type": "class",
                    "start": node.start_point[0],
                    "end": node.end_point[0] + 1,
                })
    return symbols


# ---------------------------------------------------------------------------
# Symbol extraction - two-tier dispatcher (AST → regex fallback)
# ---------------------------------------------------------------------------

def _extract_symbols(lines: list[str], language: str) -> list[dict]:
    """Extract top-level symbols from the file.

    Tries AST-based extraction first; falls back to regex on failure or
    empty result.

    Returns a list of dicts with keys: name, type, start, end (line indices).
    """
    ast_extractors = {
        "python":     _extract_python_symbols_ast,
        "typescript": lambda l: _extract_ts_js_symbols_ast(l, "typescript"),
        "javascript": lambda l: _extract_ts_js_symbols_ast(l, "javascript"),
        "java":       _extract_java_symbols_ast,
        "go":         _extract_go_symbols_ast,
    }

    regex_extractors = {
        "python":     _extract_python_symbols,
        "typescript": _extract_ts_js_symbols,
        "javascript": _extract_ts_js_symbols,
        "java":       _extract_java_symbols,
        "go":         _extract_go_symbols,
        "rust":       _extract_rust_symbols,
    }

    ast_fn = ast_extractors.get(language)
    if ast_fn is not None:
        try:
            result = ast_fn(lines)
            if result:
                return result
        except Exception as exc:
            logger.debug("AST extraction failed for %s, falling back to regex: %s", language, exc)

    regex_fn = regex_extractors.get(language)
    if regex_fn is not None:
        return regex_fn(lines)

    return []


def _scan(lines: list[str], patterns: list[tuple[re.Pattern, str]], top_level) -> list[dict]:
    """Match *patterns* line by line; each symbol runs to the next one or EOF."""
    symbols: list[dict] = []
    for i, line in enumerate(lines):
        if not top_level(line):
            continue
        stripped = line.strip()
        for pat, sym_type in patterns:
            m = pat.match(stripped)
            if m:
                symbols.append({"name": m.group(1), "type": sym_type, "start": i, "end": i})
                break

    for idx, sym in enumerate(symbols):
        sym["end"] = symbols[idx + 1]["start"] if idx + 1 < len(symbols) else len(lines)
    return symbols


def _no_indent(line: str) -> bool:
    return not line or not line[0].isspace()


def _extract_python_symbols(lines: list[str]) -> list[dict]:
    """Extract Python functions and classes."""
    return _scan(lines, [
        (re.compile(r"^(?:async\s+)?def\s+(\w+)"), "function"),
        (re.compile(r"^class\s+(\w+)"), "class"),
    ], _no_indent)


def _extract_ts_js_symbols(lines: list[str]) -> list[dict]:
    """Extract TypeScript/JavaScript functions, classes, and arrow functions."""
    return _scan(lines, [
        (re.compile(r"^(?:export\s+)?(?:async\s+)?function\s+(\w+)"), "function"),
        (re.compile(r"^(?:export\s+)?class\s+(\w+)"), "class"),
        (re.compile(r"^(?:export\s+)?(?:const|let|var)\s+(\w+)\s*=\s*(?:async\s*)?\("), "function"),
    ], _no_indent)


def _extract_java_symbols(lines: list[str]) -> list[dict]:
    """Extract Java classes, interfaces and enums."""
    return _scan(lines, [
        (re.compile(
            r"^(?:public\s+|private\s+|protected\s+)?(?:abstract\s+|static\s+|final\s+)*"
            r"(?:class|interface|enum)\s+(\w+)"
        ), "class"),
    ], lambda line: len(line) - len(line.lstrip()) <= 4)


def _extract_go_symbols(lines: list[str]) -> list[dict]:
    """Extract Go functions and type declarations."""
    return _scan(lines, [
        (re.compile(r"^func\s+(?:\(\w+\s+\*?\w+\)\s+)?(\w+)"), "function"),
        (re.compile(r"^type\s+(\w+)\s+(?:struct|interface)"), "class"),
    ], _no_indent)


_RUST_VIS = r"(?:pub(?:\([^)]*\))?\s+)?"


def _extract_rust_symbols(lines: list[str]) -> list[dict]:
    """Extract Rust items: functions, structs, enums, traits, impls, modules."""
    return _scan(lines, [
        (re.compile(_RUST_VIS + r"(?:const\s+)?(?:async\s+)?(?:unsafe\s+)?fn\s+(\w+)"), "function"),
        (re.compile(_RUST_VIS + r"(?:struct|enum|union|trait)\s+(\w+)"), "class"),
        (re.compile(r"^(?:unsafe\s+)?impl(?:<[^>]*>)?\s+(?:[\w:<>, ]+\s+for\s+)?([\w:]+)"), "class"),
        (re.compile(_RUST_VIS + r"mod\s+(\w+)\s*\{"), "class"),
    ], _no_indent)
