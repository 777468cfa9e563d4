"""
Wiring of stores, providers and resolvers from settings
"""

from .cache import ResolutionStore, open_stores
from .channel import MessageHandler
from .library import LocalLyricsLibrary
from .logger import LOGGER
from .providers import YouTubeCaptionProvider, build_providers
from .resolver import LyricsResolver
from .translation import GeminiProvider, GoogleTranslateProvider, TranslationResolver


class Engine:
	"""One session's resolution stack sharing a single ResolutionStore"""

	def __init__(self, settings, session=None, stores=None, logger=None):
		self.settings = settings
		self.logger = logger or LOGGER
		self.store = ResolutionStore()
		self.stores = stores or open_stores(settings, self.logger)
		self.library = LocalLyricsLibrary(self.stores.local, logger=self.logger)

		self.lyrics = LyricsResolver(
			self.store,
			settings.lyrics,
			build_providers(settings.lyrics, self.library, session, self.logger),
			persistent=self.stores.lyrics,
			caption_provider=YouTubeCaptionProvider(session, self.logger),
			library=self.library,
			logger=self.logger,
		)
		google = GoogleTranslateProvider(
			session,
			max_retries=settings.translation.max_retries,
			retry_delay_ms=settings.translation.retry_delay_ms,
			logger=self.logger,
		)
		gemini = GeminiProvider(
			settings.translation.gemini_api_key,
			settings.translation.gemini_model,
			session,
			logger=self.logger,
		)
		self.translations = TranslationResolver(
			self.store,
			settings.translation,
			{google.name: google, gemini.name: gemini},
			lyrics_resolver=self.lyrics,
			persistent=self.stores.translations,
			logger=self.logger,
		)
		self.handler = MessageHandler(
			self.lyrics, self.translations, self.store, self.stores, self.library, self.logger
		)
