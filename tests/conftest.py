"""Shared pytest fixtures for the kbindex test suite."""

from __future__ import annotations

import hashlib
import threading
from pathlib import Path

import pytest

from kbindex.interfaces.embedding_provider import IEmbeddingProvider
from kbindex.models.config import IndexingConfig
from kbindex.models.document import Document
from kbindex.models.embedding import EmbeddingResponse, ProviderKind
from kbindex.providers.store.memory_store import InMemoryDocumentStore
from kbindex.utils.errors import ProviderError

# ---------------------------------------------------------------------------
# Fake embedding provider
# ---------------------------------------------------------------------------


class FakeEmbeddingProvider(IEmbeddingProvider):
    """Deterministic provider: the vector is derived from a sha256 of the text.

    Texts containing any string in ``fail_on`` raise :class:`ProviderError`;
    texts containing a key of ``dimension_overrides`` get that many
    dimensions instead of the default.
    """

    def __init__(
        self,
        dimensions: int = 8,
        fail_on: tuple[str, ...] = (),
        dimension_overrides: dict[str, int] | None = None,
    ) -> None:
        self.dimensions = dimensions
        self.fail_on = fail_on
        self.dimension_overrides = dimension_overrides or {}
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def embed_blocking(self, text: str, model: str) -> EmbeddingResponse:
        with self._lock:
            self.calls.append((text, model))
        if any(marker in text for marker in self.fail_on):
            raise ProviderError("simulated provider failure", provider_name="fake")

        dims = self.dimensions
        for marker, override in self.dimension_overrides.items():
            if marker in text:
                dims = override
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        vector = [(digest[i % len(digest)] / 255.0) - 0.5 for i in range(dims)]
        return EmbeddingResponse(embedding=vector, model=model, dimensions=dims)

    def get_kind(self) -> ProviderKind:
        return ProviderKind.LOCAL

    def get_provider_name(self) -> str:
        return "fake"

    def is_available(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def fake_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def memory_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def sample_english_text() -> str:
    paragraphs = [
        (
            "Retrieval systems split long documents into smaller passages before "
            "computing embeddings. Each passage should be small enough to embed "
            "cheaply and large enough to carry meaning on its own."
        ),
        (
            "Overlap between neighbouring passages keeps sentences that straddle a "
            "boundary searchable from both sides. Too much overlap wastes storage; "
            "too little loses context at the edges."
        ),
        (
            "Dr. Smith reviewed the indexing pipeline in March. She noted that the "
            "worker pool kept the event loop responsive while vectors were computed "
            "on background threads."
        ),
        (
            "Parent and child segments let a search match a precise child passage "
            "while returning the wider parent passage as context for the answer."
        ),
    ]
    return "\n\n".join(paragraphs)


@pytest.fixture
def sample_cjk_text() -> str:
    return (
        "知识库系统会先把长文档切分成较小的段落，再为每个段落计算向量。"
        "段落太长会降低检索精度，段落太短又会丢失上下文。\n\n"
        "中文文本没有空格分词，所以切分器优先按段落切分，然后按句号、问号和感叹号切分。"
        "这样可以保证每个片段都是完整的句子！\n\n"
        "向量维度必须在同一文档内保持一致，否则相似度计算就没有意义？"
        "修复操作会找出多数维度，并把少数片段重新排队。"
    )


@pytest.fixture
def sample_markdown() -> str:
    return (
        "# Installation\n\n"
        "Install the package with pip and the optional extras you need.\n\n"
        "## Configuration\n\n"
        "Settings are read from environment variables and a .env file.\n\n"
        "## Usage\n\n"
        "Run the index command with a file path to build segments and embeddings."
    )


@pytest.fixture
def sample_python_code() -> str:
    return (
        "import os\n"
        "\n"
        "\n"
        "def load(path):\n"
        "    with open(path) as f:\n"
        "        return f.read()\n"
        "\n"
        "\n"
        "@staticmethod\n"
        "def helper():\n"
        "    return os.getcwd()\n"
        "\n"
        "\n"
        "class Loader:\n"
        "    def run(self):\n"
        "        return load('x')\n"
    )


def _make_document(text: str, **config_overrides) -> Document:
    settings = {"chunk_size": 200, "chunk_overlap": 20, "batch_size": 3}
    settings.update(config_overrides)
    return Document(name="sample.txt", source_text=text, indexing_config=IndexingConfig(**settings))


@pytest.fixture
def make_document():
    """Factory building a document that carries its text and a small-chunk config."""
    return _make_document


@pytest.fixture
def provider_factory():
    """Return :class:`FakeEmbeddingProvider` for tests that need custom behaviour."""
    return FakeEmbeddingProvider
