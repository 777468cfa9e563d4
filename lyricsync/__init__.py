"""
lyricsync - synced lyrics resolution, caching and playback synchronization
"""

__version__ = "1.0.0"

from .cache import ResolutionStore, cache_key, translation_key
from .errors import (
	ConfigError,
	InvalidResponseError,
	LyricsError,
	NotFoundError,
	ProviderChainError,
	ProviderError,
	StaleCacheError,
	TranslationError,
)
from .models import LyricLine, LyricsDocument, SongIdentity, Syllable, SyncKind, VersionedLyrics
from .render import DisplayMode, build_render_model
from .resolver import LyricsResolver
from .sync import LyricsSynchronizer
from .translation import Action, TranslationResolver
