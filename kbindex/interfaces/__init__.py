"""Abstract collaborator contracts.

Services and the pipeline depend only on these ABCs; concrete adapters
live under :mod:`kbindex.providers`.
"""

from kbindex.interfaces.cache_provider import ICacheProvider
from kbindex.interfaces.document_store import IDocumentStore
from kbindex.interfaces.embedding_provider import IEmbeddingProvider
from kbindex.interfaces.job_dispatcher import IJobDispatcher, StageHandler
from kbindex.interfaces.notifier import INotifier
from kbindex.interfaces.text_extractor import ITextExtractor
from kbindex.interfaces.token_classifier import ITokenClassifier, TokenPrediction

__all__ = [
    "ICacheProvider",
    "IDocumentStore",
    "IEmbeddingProvider",
    "IJobDispatcher",
    "INotifier",
    "ITextExtractor",
    "ITokenClassifier",
    "StageHandler",
    "TokenPrediction",
]
