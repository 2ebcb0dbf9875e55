"""Tests for the symbol-aware chunker."""
import pytest

from coderag.config import ChunkingSettings
from coderag.errors import ChunkingError
from coderag.rag.chunker import (
    CodeChunk,
    chunk_document,
    estimate_tokens,
    _extract_python_symbols,
    _extract_python_symbols_ast,
    _extract_rust_symbols,
)
from coderag.rag.schemas import Document


def _doc(content: str, language: str = "python", path: str = "app.py") -> Document:
    return Document(path=path, content=content, language=language)


def _stitch(text: str, chunks) -> str:
    """Rebuild *text* from chunks in order, skipping bytes already covered."""
    raw = text.encode("utf-8")
    out = b""
    covered = 0
    for c in chunks:
        out += raw[max(covered, c.start_byte):c.end_byte]
        covered = c.end_byte
    return out.decode("utf-8")


# ---------------------------------------------------------------------------
# Python
# ---------------------------------------------------------------------------

class TestChunkPython:
    def test_basic_functions(self):
        code = (
            "import os\n"
            "import sys\n"
            "\n"
            "def greet(name):\n"
            "    print(f'Hello, {name}')\n"
            "\n"
            "def farewell(name):\n"
            "    print(f'Goodbye, {name}')\n"
        )
        chunks = chunk_document(_doc(code))
        assert [c.symbol_name for c in chunks] == ["", "greet", "farewell"]
        assert [c.symbol_type for c in chunks] == ["block", "function", "function"]
        assert [(c.start_line, c.end_line) for c in chunks] == [(1, 2), (4, 5), (7, 8)]
        for c in chunks:
            assert c.file_path == "app.py"
            assert c.language == "python"

    def test_class_extraction(self):
        code = (
            "class Dog:\n"
            "    def __init__(self, name):\n"
            "        self.name = name\n"
            "\n"
            "    def bark(self):\n"
            "        return 'Woof!'\n"
            "\n"
            "class Cat:\n"
            "    def meow(self):\n"
            "        return 'Meow!'\n"
        )
        chunks = chunk_document(_doc(code, path="animals.py"))
        names = [c.symbol_name for c in chunks]
        assert names == ["Dog", "Cat"]
        assert all(c.symbol_type == "class" for c in chunks)

    def test_async_function(self):
        code = (
            "async def fetch_data(url):\n"
            "    response = await aiohttp.get(url)\n"
            "    return response\n"
        )
        chunks = chunk_document(_doc(code, path="client.py"))
        assert len(chunks) == 1
        assert chunks[0].symbol_name == "fetch_data"
        assert chunks[0].symbol_type == "function"

    def test_decorator_included_in_symbol(self):
        code = (
            "import functools\n"
            "\n"
            "@functools.cache\n"
            "def cached():\n"
            "    return 1\n"
        )
        chunks = chunk_document(_doc(code))
        fn = [c for c in chunks if c.symbol_name == "cached"][0]
        assert fn.content.startswith("@functools.cache")
        assert fn.start_line == 3

    def test_module_level_code_between_symbols_is_block(self):
        code = (
            "def a():\n"
            "    pass\n"
            "\n"
            "CONSTANT = 42\n"
            "\n"
            "def b():\n"
            "    pass\n"
        )
        chunks = chunk_document(_doc(code))
        blocks = [c for c in chunks if c.symbol_type == "block"]
        assert len(blocks) == 1
        assert blocks[0].content == "CONSTANT = 42\n"
        assert blocks[0].start_line == 4

    def test_syntax_error_falls_back_to_regex(self):
        code = (
            "def ok():\n"
            "    pass\n"
            "\n"
            "def broken(:\n"
            "    pass\n"
        )
        assert _extract_python_symbols_ast(code.splitlines(keepends=True)) == []
        names = [s["name"] for s in _extract_python_symbols(code.splitlines(keepends=True))]
        assert names == ["ok", "broken"]

        chunks = chunk_document(_doc(code))
        assert [c.symbol_name for c in chunks] == ["ok", "broken"]


# ---------------------------------------------------------------------------
# Rust
# ---------------------------------------------------------------------------

class TestChunkRust:
    CODE = (
        "use std::io;\n"
        "\n"
        "pub fn main() {\n"
        "    println!(\"hi\");\n"
        "}\n"
        "\n"
        "struct Foo {\n"
        "    a: i32,\n"
        "}\n"
        "\n"
        "impl Display for Foo {\n"
        "    fn fmt(&self) {}\n"
        "}\n"
    )

    def test_items_extracted(self):
        symbols = _extract_rust_symbols(self.CODE.splitlines(keepends=True))
        assert [(s["name"], s["type"]) for s in symbols] == [
            ("main", "function"),
            ("Foo", "class"),
            ("Foo", "class"),
        ]

    def test_chunks(self):
        chunks = chunk_document(_doc(self.CODE, language="rust", path="src/main.rs"))
        assert [c.symbol_name for c in chunks] == ["", "main", "Foo", "Foo"]
        assert chunks[0].content == "use std::io;\n"
        assert chunks[1].content.startswith("pub fn main()")
        assert chunks[1].end_line == 5


# ---------------------------------------------------------------------------
# TypeScript / Go (tree-sitter when installed, regex otherwise)
# ---------------------------------------------------------------------------

class TestChunkOtherLanguages:
    def test_typescript(self):
        code = (
            "export function add(a: number, b: number) {\n"
            "  return a + b;\n"
            "}\n"
            "\n"
            "export class Box {\n"
            "  v = 1;\n"
            "}\n"
        )
        chunks = chunk_document(_doc(code, language="typescript", path="src/box.ts"))
        assert [(c.symbol_name, c.symbol_type) for c in chunks] == [
            ("add", "function"),
            ("Box", "class"),
        ]
        assert chunks[0].end_line == 3

    def test_go(self):
        code = (
            "package main\n"
            "\n"
            "func Run() {\n"
            "}\n"
            "\n"
            "type Cfg struct {\n"
            "\tA int\n"
            "}\n"
        )
        chunks = chunk_document(_doc(code, language="go", path="main.go"))
        assert [c.symbol_name for c in chunks] == ["", "Run", "Cfg"]
        assert chunks[0].content == "package main\n"


# ---------------------------------------------------------------------------
# Markdown
# ---------------------------------------------------------------------------

class TestChunkMarkdown:
    def test_split_on_headings(self):
        text = (
            "Preamble line.\n"
            "\n"
            "# Title\n"
            "\n"
            "Intro paragraph.\n"
            "\n"
            "## Usage\n"
            "\n"
            "Run it.\n"
        )
        chunks = chunk_document(_doc(text, language="markdown", path="README.md"))
        assert [(c.symbol_name, c.symbol_type) for c in chunks] == [
            ("", "block"),
            ("Title", "section"),
            ("Usage", "section"),
        ]

    def test_heading_inside_code_fence_ignored(self):
        text = (
            "# Real\n"
            "```bash\n"
            "# not a heading\n"
            "echo hi\n"
            "```\n"
        )
        chunks = chunk_document(_doc(text, language="markdown", path="doc.md"))
        assert len(chunks) == 1
        assert chunks[0].symbol_name == "Real"


# ---------------------------------------------------------------------------
# Budget enforcement
# ---------------------------------------------------------------------------

class TestBudget:
    def test_oversized_symbol_split_at_blank_lines(self):
        body = []
        for i in range(30):
            body.append(f"    x{i} = {i}\n")
            if i % 5 == 4:
                body.append("\n")
        code = "def big():\n" + "".join(body) + "    return 0\n"
        settings = ChunkingSettings(max_lines=20, max_tokens=10_000, overlap_lines=2, min_chunk_lines=2)

        chunks = chunk_document(_doc(code), settings)

        assert len(chunks) >= 2
        assert all(c.symbol_name.startswith("big (part ") for c in chunks)
        assert all(c.end_line - c.start_line + 1 <= 20 for c in chunks)
        assert chunks[0].start_line == 1
        assert chunks[-1].content.endswith("return 0\n")
        # Blank-line cuts never overlap.
        for prev, nxt in zip(chunks, chunks[1:]):
            assert nxt.start_line > prev.end_line

    def test_sliding_window_when_no_blank_lines(self):
        text = "".join(f"value_{i} = {i}\n" for i in range(50))
        settings = ChunkingSettings(max_lines=20, max_tokens=10_000, overlap_lines=2, min_chunk_lines=2)

        chunks = chunk_document(_doc(text, language="text", path="data.txt"), settings)

        assert [(c.start_line, c.end_line) for c in chunks] == [(1, 20), (19, 38), (37, 50)]

    def test_token_budget_and_trailing_remainder(self):
        line = "abcdefghijklmnopqrs\n"  # 20 chars → 5 tokens
        text = line * 5
        settings = ChunkingSettings(max_lines=100, max_tokens=10, overlap_lines=0, min_chunk_lines=1)

        chunks = chunk_document(_doc(text, language="text", path="t.txt"), settings)

        assert [(c.start_line, c.end_line) for c in chunks] == [(1, 2), (3, 4), (5, 5)]
        assert all(c.token_estimate <= 10 for c in chunks)
        # Nothing dropped: the small remainder is its own chunk.
        assert "".join(c.content for c in chunks) == text

    def test_single_line_document_over_budget(self):
        text = '{"data": "' + "x" * 99_985 + '"}\n'
        doc = _doc(text, language="json", path="data.json")

        chunks = chunk_document(doc, ChunkingSettings(max_tokens=1024))

        assert len(chunks) > 1
        assert all(c.token_estimate <= 1024 for c in chunks)
        assert all((c.start_line, c.end_line) == (1, 1) for c in chunks)
        assert _stitch(text, chunks) == text
        # Consecutive windows overlap.
        for prev, nxt in zip(chunks, chunks[1:]):
            assert prev.start_byte < nxt.start_byte < prev.end_byte

    def test_long_line_between_short_lines(self):
        text = "a = 1\n" + "y" * 500 + "\n" + "b = 2\n"
        settings = ChunkingSettings(max_lines=50, max_tokens=25, overlap_lines=2, min_chunk_lines=1)

        chunks = chunk_document(_doc(text, language="text", path="mixed.txt"), settings)

        assert chunks[0].content == "a = 1\n"
        assert chunks[-1].content == "b = 2\n"
        assert chunks[-1].start_line == 3
        middle = chunks[1:-1]
        assert len(middle) == 6
        assert all(c.start_line == 2 and c.token_estimate <= 25 for c in middle)
        assert _stitch(text, chunks) == text

    def test_long_line_byte_offsets_with_multibyte_text(self):
        text = "é☕" * 300 + "\n"
        settings = ChunkingSettings(max_lines=10, max_tokens=20, overlap_lines=0, min_chunk_lines=1)

        chunks = chunk_document(_doc(text, language="text", path="wide.txt"), settings)

        raw = text.encode("utf-8")
        assert len(chunks) > 1
        for c in chunks:
            assert raw[c.start_byte:c.end_byte].decode("utf-8") == c.content
            assert c.token_estimate <= 20
        assert _stitch(text, chunks) == text

    def test_window_overlap_capped_at_half_window(self):
        text = "abcdefghi\n" * 12  # 4 lines fit the 10-token budget
        settings = ChunkingSettings(max_lines=50, max_tokens=10, overlap_lines=10, min_chunk_lines=1)

        chunks = chunk_document(_doc(text, language="text", path="t.txt"), settings)

        assert [(c.start_line, c.end_line) for c in chunks] == [
            (1, 4), (3, 6), (5, 8), (7, 10), (9, 12),
        ]


# ---------------------------------------------------------------------------
# Offsets, determinism, edge cases
# ---------------------------------------------------------------------------

class TestChunkInvariants:
    def test_byte_offsets_slice_content(self):
        code = (
            "# café ☕\n"
            "\n"
            "def brew():\n"
            "    return 'espresso'\n"
        )
        doc = _doc(code)
        raw = code.encode("utf-8")
        for c in chunk_document(doc):
            assert raw[c.start_byte:c.end_byte].decode("utf-8") == c.content

    def test_deterministic(self):
        code = "def a():\n    pass\n\ndef b():\n    pass\n"
        assert chunk_document(_doc(code)) == chunk_document(_doc(code))

    def test_empty_and_whitespace_documents(self):
        assert chunk_document(_doc("")) == []
        assert chunk_document(_doc("   \n\n\t\n")) == []

    def test_nul_bytes_rejected(self):
        with pytest.raises(ChunkingError, match="NUL"):
            chunk_document(_doc("abc\x00def"))

    def test_control_characters_rejected(self):
        with pytest.raises(ChunkingError) as exc_info:
            chunk_document(_doc("\x01\x02\x03" * 20 + "text", path="blob.bin"))
        assert exc_info.value.path == "blob.bin"

    def test_to_metadata(self):
        chunk = CodeChunk(
            content="def f():\n    pass\n",
            file_path="m.py",
            start_line=3,
            end_line=4,
            start_byte=10,
            end_byte=28,
            symbol_name="f",
            symbol_type="function",
            language="python",
        )
        meta = chunk.to_metadata()
        assert meta.source_path == "m.py"
        assert (meta.start_line, meta.end_line) == (3, 4)
        assert meta.symbol_name == "f"

    def test_estimate_tokens(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2
