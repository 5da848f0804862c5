"""Parent/child segment trees built on top of :class:`TextSplitter`.

Coarse *parent* chunks carry context; fine *child* chunks are the unit
that gets embedded and searched.  The chunker works on an arena: every
draft lives in one flat list and refers to its parent through a local
key (``parent_0``, ``parent_1``, ...).  Persisted ids only exist after the
store has inserted the parents, so :meth:`HierarchicalChunker.link_children`
translates local keys to real ids afterwards and drops any child whose
parent key cannot be resolved.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from kbindex.models.config import SplitConfig
from kbindex.models.document import DocumentSegment, SegmentStatus, SegmentType
from kbindex.services.chunking.text_cleaner import count_words, estimate_tokens
from kbindex.services.chunking.text_splitter import TextSplitter

logger = structlog.get_logger(logger_name=__name__)

_PARENT_SIZE_CEILING = 1200
_PARENT_OVERLAP_CEILING = 120


@dataclass(frozen=True)
class SegmentDraft:
    """An unpersisted segment produced by the chunker."""

    key: str
    content: str
    segment_type: SegmentType
    hierarchy_level: int
    parent_key: str | None = None
    child_order: int | None = None
    child_count: int = 0


class HierarchicalChunker:
    """Builds flat or parent/child segment drafts from raw text."""

    def __init__(self, splitter: TextSplitter | None = None) -> None:
        self._splitter = splitter or TextSplitter()

    @staticmethod
    def derive_configs(base: SplitConfig) -> tuple[SplitConfig, SplitConfig]:
        """Return ``(parent_config, child_config)`` for a dataset's base config.

        Parents are twice the base size with a hard ceiling of 1200
        characters (never smaller than the base size); parent overlap is
        twice the base overlap, at most 120.  Children use the base config.
        """
        parent_size = max(base.chunk_size, min(base.chunk_size * 2, _PARENT_SIZE_CEILING))
        parent_overlap = min(base.chunk_overlap * 2, _PARENT_OVERLAP_CEILING)
        parent = base.model_copy(update={"chunk_size": parent_size, "chunk_overlap": parent_overlap})
        return parent, base

    def build_flat(self, text: str, config: SplitConfig) -> list[SegmentDraft]:
        """Split *text* into independent ``chunk`` drafts."""
        chunks = self._split(text, config)
        return [
            SegmentDraft(
                key=f"chunk_{i}",
                content=chunk,
                segment_type=SegmentType.CHUNK,
                hierarchy_level=1,
            )
            for i, chunk in enumerate(chunks)
        ]

    def build_hierarchy(
        self,
        text: str,
        parent_config: SplitConfig,
        child_config: SplitConfig,
    ) -> list[SegmentDraft]:
        """Build the parent/child arena for *text*.

        Parents come first, in document order, followed by every parent's
        children.  ``child_order`` is 1-based within its parent and each
        parent's ``child_count`` equals the number of children built for it.
        """
        parents: list[SegmentDraft] = []
        children: list[SegmentDraft] = []

        for i, parent_text in enumerate(self._split(text, parent_config)):
            key = f"parent_{i}"
            child_texts = self._split(parent_text, child_config)
            for order, child_text in enumerate(child_texts, start=1):
                children.append(
                    SegmentDraft(
                        key=f"{key}_child_{order}",
                        content=child_text,
                        segment_type=SegmentType.CHILD,
                        hierarchy_level=2,
                        parent_key=key,
                        child_order=order,
                    )
                )
            parents.append(
                SegmentDraft(
                    key=key,
                    content=parent_text,
                    segment_type=SegmentType.PARENT,
                    hierarchy_level=1,
                    child_count=len(child_texts),
                )
            )

        logger.debug("hierarchy_built", parents=len(parents), children=len(children))
        return [*parents, *children]

    @staticmethod
    def link_children(
        children: list[SegmentDraft],
        key_to_id: dict[str, str],
    ) -> list[tuple[SegmentDraft, str]]:
        """Pair each child draft with its parent's persisted id.

        Children whose ``parent_key`` is missing from *key_to_id* are
        dropped with a warning rather than persisted dangling.
        """
        linked: list[tuple[SegmentDraft, str]] = []
        for child in children:
            parent_id = key_to_id.get(child.parent_key or "")
            if parent_id is None:
                logger.warning(
                    "orphan_child_segment_skipped",
                    child_key=child.key,
                    parent_key=child.parent_key,
                )
                continue
            linked.append((child, parent_id))
        return linked

    @staticmethod
    def to_segment(
        draft: SegmentDraft,
        document_id: str,
        dataset_id: str,
        position: int,
        parent_id: str | None = None,
        child_count: int | None = None,
    ) -> DocumentSegment:
        """Materialize *draft* as a ``chunked`` :class:`DocumentSegment`."""
        return DocumentSegment(
            document_id=document_id,
            dataset_id=dataset_id,
            position=position,
            content=draft.content,
            word_count=count_words(draft.content),
            tokens=estimate_tokens(draft.content),
            status=SegmentStatus.CHUNKED,
            parent_id=parent_id,
            segment_type=draft.segment_type,
            hierarchy_level=draft.hierarchy_level,
            child_order=draft.child_order,
            child_count=draft.child_count if child_count is None else child_count,
            hierarchy_metadata={"key": draft.key, "parent_key": draft.parent_key}
            if draft.segment_type is not SegmentType.CHUNK
            else {},
        )

    def _split(self, text: str, config: SplitConfig) -> list[str]:
        return self._splitter.split(
            text,
            strategy=config.strategy,
            chunk_size=config.chunk_size,
            chunk_overlap=config.chunk_overlap,
            separators=config.separators,
        )
