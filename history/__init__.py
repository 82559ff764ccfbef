from .eviction import EvictionPolicy, LatestInteractionPolicy, SimpleFifoPolicy, build_policy
from .storage import FileHistoryStorage, HistoryStorage, MemoryHistoryStorage
from .store import TranscriptStore
from .tokenizer import EstimatingTokenizer, TiktokenTokenizer, Tokenizer, build_tokenizer, serialize_turns

__all__ = [
    "EstimatingTokenizer",
    "EvictionPolicy",
    "FileHistoryStorage",
    "HistoryStorage",
    "LatestInteractionPolicy",
    "MemoryHistoryStorage",
    "SimpleFifoPolicy",
    "TiktokenTokenizer",
    "Tokenizer",
    "TranscriptStore",
    "build_policy",
    "build_tokenizer",
    "serialize_turns",
]
