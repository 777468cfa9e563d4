"""
Lyrics resolution: embedded fast path, memory and persistent caches, shared
in-flight work per song, and the ordered provider chain.
"""

import asyncio

import aiohttp

from .cache import cache_key
from .config import CacheStrategy
from .errors import InvalidResponseError, NotFoundError, ProviderChainError, ProviderError
from .logger import LOGGER
from .models import PersistentCacheEntry, VersionedLyrics, is_empty_lyrics
from .providers import FetchOptions
from .scheduler import wall_clock_ms


def _consume_exception(task):
	# Waiters may all have gone away; the failure is already logged
	if not task.cancelled():
		task.exception()


class LyricsResolver:
	def __init__(self, store, settings, providers, persistent=None, caption_provider=None,
				 library=None, clock=None, logger=None):
		self.store = store
		self.settings = settings
		self.providers = providers
		self.persistent = persistent
		self.caption_provider = caption_provider
		self.library = library
		self.clock = clock or wall_clock_ms
		self.logger = logger or LOGGER

	def get_provider_order(self):
		"""Preferred provider first, then the configured order without excluded ones"""
		preferred = self.settings.preferred_provider
		excluded = set(self.settings.excluded_providers)
		order = [preferred] if preferred else []
		order += [p for p in self.settings.provider_order if p != preferred and p not in excluded]
		return order

	def fetch_options(self, force_reload=False, captions=None):
		return FetchOptions(
			bypass_cache=force_reload or self.settings.cache_strategy is CacheStrategy.NONE,
			source_order=self.settings.source_order,
			captions=captions,
			timeout=self.settings.search_timeout,
		)

	async def resolve(self, identity, force_reload=False, embedded=None, captions=None):
		"""Resolve versioned lyrics for a song; raises NotFoundError when nothing is found"""
		fallback = None
		if not is_empty_lyrics(embedded):
			embedded_result = VersionedLyrics(embedded, int(self.clock()))
			if not self.settings.ttml_bypass or embedded.is_word_synced:
				self.logger.log_debug(f"Using embedded lyrics for {identity.title}")
				return embedded_result
			self.logger.log_debug("Embedded lyrics bypass active, fetching external lyrics")
			fallback = embedded_result

		key = cache_key(identity)
		result = None
		if not force_reload:
			result = await self._get_cached(key) or await self._get_local(key, identity)

		if result is None:
			try:
				result = await self._get_shared(key, identity, force_reload, captions)
			except NotFoundError:
				if fallback is not None:
					self.logger.log_info("No external lyrics, reverting to embedded lyrics")
					return fallback
				raise

		if fallback is not None and not result.document.is_word_synced:
			self.logger.log_info("External lyrics not word synced, reverting to embedded lyrics")
			return fallback
		return result

	# ==============
	#  CACHE TIERS
	# ==============
	async def _get_cached(self, key):
		cached = self.store.get_lyrics(key)
		if cached is not None:
			self.logger.log_trace(f"Memory cache hit: {key}")
			return cached

		strategy = self.settings.cache_strategy
		if strategy is CacheStrategy.NONE or self.persistent is None:
			return None

		value = await self.persistent.get(key)
		if value is None:
			return None
		try:
			entry = PersistentCacheEntry.from_dict(value)
		except (KeyError, TypeError, ValueError) as e:
			self.logger.log_warn(f"Dropping corrupt cache entry {key}: {e}")
			await self.persistent.delete(key)
			return None

		if not entry.is_fresh(self.clock(), strategy.window_ms):
			self.logger.log_debug(f"Persistent cache entry expired: {key}")
			await self.persistent.delete(key)
			return None

		versioned = VersionedLyrics(entry.lyrics, entry.version)
		self.store.set_lyrics(key, versioned)
		self.logger.log_trace(f"Persistent cache hit: {key}")
		return versioned

	async def _get_local(self, key, identity):
		"""User uploads win over every network provider"""
		if self.library is None:
			return None
		entry = await self.library.find(identity.title, identity.artist)
		if entry is None or is_empty_lyrics(entry.document):
			return None
		versioned = VersionedLyrics(entry.document, entry.timestamp)
		self.store.set_lyrics(key, versioned)
		self.logger.log_info(f"Using local lyrics {entry.song_id} for {identity.title}")
		return versioned

	async def _get_shared(self, key, identity, force_reload, captions):
		# No await between the checks and registration below
		if not force_reload:
			cached = self.store.get_lyrics(key)
			if cached is not None:
				return cached

		task = self.store.get_inflight(key)
		if task is None:
			task = asyncio.ensure_future(self._fetch_new(key, identity, force_reload, captions))
			task.add_done_callback(_consume_exception)
			self.store.register_inflight(key, task)
		else:
			self.logger.log_debug(f"Joining in-flight resolution: {key}")
		return await asyncio.shield(task)

	# ==============
	#  PROVIDER CHAIN
	# ==============
	async def _fetch_new(self, key, identity, force_reload, captions):
		generation = self.store.generation
		try:
			options = self.fetch_options(force_reload, captions)
			document, errors, attempted = await self._run_chain(identity, options)

			if is_empty_lyrics(document):
				if attempted and len(errors) == attempted:
					self.logger.log_error(f"All providers failed for {key}")
					raise ProviderChainError(errors)
				raise NotFoundError()

			versioned = VersionedLyrics(document, int(self.clock()))
			if self.store.generation != generation:
				self.logger.log_debug(f"Caches were reset during resolution of {key}, not storing")
				return versioned
			self.store.set_lyrics(key, versioned)
			await self._persist(key, identity, versioned)
			return versioned
		finally:
			self.store.clear_inflight(key, asyncio.current_task())

	async def _persist(self, key, identity, versioned):
		if self.settings.cache_strategy is CacheStrategy.NONE or self.persistent is None:
			return
		entry = PersistentCacheEntry(
			key=key,
			lyrics=versioned.document,
			version=versioned.version,
			stored_at_ms=int(self.clock()),
			song_duration=identity.duration,
		)
		try:
			await self.persistent.set(key, entry.to_dict())
		except Exception as e:
			self.logger.log_error(f"Failed to persist lyrics for {key}: {e}")

	async def _try_provider(self, name, provider, identity, options, errors):
		try:
			document = await provider.fetch(identity, options)
		except (ProviderError, aiohttp.ClientError, asyncio.TimeoutError) as e:
			self.logger.log_warn(f"Provider {name} failed: {e}")
			errors.append((name, e))
			return None
		except (AttributeError, TypeError, ValueError) as e:
			error = InvalidResponseError(name, f"malformed response: {e}")
			self.logger.log_warn(f"Provider {name} failed: {error}")
			errors.append((name, error))
			return None
		if is_empty_lyrics(document):
			self.logger.log_debug(f"Provider {name} returned nothing")
			return None
		self.logger.log_info(f"Lyrics found via {name} ({document.kind.value}, {len(document.lines)} lines)")
		return document

	async def _run_chain(self, identity, options):
		errors = []
		attempted = 0
		for name in self.get_provider_order():
			provider = self.providers.get(name)
			if provider is None:
				self.logger.log_debug(f"Unknown provider {name}, skipping")
				continue
			if not provider.available:
				self.logger.log_debug(f"Provider {name} not configured, skipping")
				continue
			attempted += 1
			document = await self._try_provider(name, provider, identity, options, errors)
			if document is not None:
				return document, errors, attempted

		if options.captions and self.caption_provider is not None:
			attempted += 1
			name = self.caption_provider.name
			document = await self._try_provider(name, self.caption_provider, identity, options, errors)
			if document is not None:
				return document, errors, attempted

		return None, errors, attempted
