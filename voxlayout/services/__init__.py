"""Service adapters for the transcription, extraction, mapping and storage backends."""

from .base import ServiceAdapter
from .extraction import ExtractionAdapter, normalize_text
from .factory import LAYOUT_STORE_BACKENDS, ServiceBundle, create_services
from .mapping import MappingAdapter
from .models import Ack, AudioInput, EntitySet, SaveAck, TextInput, Transcript
from .persistence import HttpLayoutStore, LayoutStore, SqliteLayoutStore, layout_digest
from .transcription import DEFAULT_FORMATS, MIN_AUDIO_BYTES, TranscriptionAdapter

__all__ = [
    # Adapters
    "ServiceAdapter",
    "TranscriptionAdapter",
    "ExtractionAdapter",
    "MappingAdapter",
    # Persistence
    "LayoutStore",
    "HttpLayoutStore",
    "SqliteLayoutStore",
    "layout_digest",
    # Factory
    "ServiceBundle",
    "create_services",
    "LAYOUT_STORE_BACKENDS",
    # Models
    "Ack",
    "AudioInput",
    "EntitySet",
    "SaveAck",
    "TextInput",
    "Transcript",
    # Helpers
    "DEFAULT_FORMATS",
    "MIN_AUDIO_BYTES",
    "normalize_text",
]
