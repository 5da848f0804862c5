"""Per-document indexing configuration.

:class:`IndexingConfig` is stored on every :class:`~kbindex.models.document.Document`
so a re-dispatched stage sees exactly the settings the document was
created with.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from kbindex.models.embedding import ProviderKind
from kbindex.models.entities import EntityExtractionConfig, ExtractionMethod


class SplitStrategy(str, Enum):  # noqa: UP042
    """Text splitting strategies understood by the TextSplitter."""

    CHARACTER = "character"
    RECURSIVE_CHARACTER = "recursive_character"
    TOKEN = "token"
    SENTENCE = "sentence"
    MARKDOWN = "markdown"
    PYTHON_CODE = "python_code"
    SMART_CHUNKING = "smart_chunking"


# Chunk-size ceilings by model family.  Local transformer models are run
# on CPU with a tight context window; the large qwen3 model accepts more.
_LOCAL_TRANSFORMER_MODELS = frozenset(
    {
        "Xenova/bge-m3",
        "mixedbread-ai/mxbai-embed-large-v1",
        "WhereIsAI/UAE-Large-V1",
    }
)
_LARGE_CHUNK_MODELS = frozenset(
    {
        "qwen3-embedding:4b",
        "mixedbread-ai/mxbai-embed-large-v1",
    }
)
MIN_CHUNK_SIZE = 100


def max_chunk_size_for(model: str | None) -> int:
    """Return the largest chunk size accepted for *model*."""
    if not model:
        return 8000
    if model in _LOCAL_TRANSFORMER_MODELS:
        return 2000
    if model in _LARGE_CHUNK_MODELS:
        return 12000
    return 8000


class SplitConfig(BaseModel):
    """Arguments for one :meth:`TextSplitter.split` call.

    Not validated here; the splitter rejects bad size/overlap pairs with
    :class:`~kbindex.utils.errors.SplitConfigError`.
    """

    model_config = ConfigDict(frozen=True)

    strategy: SplitStrategy = SplitStrategy.RECURSIVE_CHARACTER
    chunk_size: int = 1000
    chunk_overlap: int = 200
    separators: list[str] | None = None


class IndexingConfig(BaseModel):
    """Chunking, embedding and NER settings for one document."""

    model_config = ConfigDict(frozen=True)

    # --- Chunking ---
    strategy: SplitStrategy = SplitStrategy.RECURSIVE_CHARACTER
    chunk_size: int = 1000
    chunk_overlap: int = 200
    separators: list[str] | None = None
    enable_parent_child: bool = False
    use_model_defaults: bool = False

    # --- Embedding ---
    embedding_model: str = "Xenova/bge-m3"
    embedding_provider: ProviderKind = ProviderKind.LOCAL
    custom_model_name: str | None = None
    batch_size: int = Field(default=5, ge=1)

    # --- NER ---
    enable_ner: bool = False
    ner_batch_size: int = Field(default=10, ge=1)
    ner_method: ExtractionMethod = ExtractionMethod.NGRAM
    max_entities: int = Field(default=8, ge=1)

    @model_validator(mode="after")
    def _check_chunk_bounds(self) -> IndexingConfig:
        upper = max_chunk_size_for(self.embedding_model)
        if not MIN_CHUNK_SIZE <= self.chunk_size <= upper:
            msg = (
                f"Chunk size must be between {MIN_CHUNK_SIZE} and {upper} "
                f"characters for model {self.embedding_model}"
            )
            raise ValueError(msg)
        if self.chunk_overlap < 0 or self.chunk_overlap >= self.chunk_size:
            msg = "Chunk overlap must be non-negative and smaller than the chunk size"
            raise ValueError(msg)
        return self

    def split_config(self) -> SplitConfig:
        return SplitConfig(
            strategy=self.strategy,
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            separators=self.separators,
        )

    def extraction_config(self) -> EntityExtractionConfig:
        """Project the NER fields into an :class:`EntityExtractionConfig`."""
        return EntityExtractionConfig(method=self.ner_method, max_entities=self.max_entities)
