"""
Tests for LyricsResolver: caching tiers, deduplication and the provider chain.
"""

import asyncio
from dataclasses import replace

import pytest

from conftest import FakeClock, FakeProvider, MemoryStore, make_line_document
from lyricsync.cache import cache_key
from lyricsync.config import CacheStrategy
from lyricsync.errors import InvalidResponseError, NotFoundError, ProviderChainError, ProviderError
from lyricsync.library import LocalLyricsLibrary
from lyricsync.models import LyricLine, LyricsDocument, PersistentCacheEntry, Syllable, SyncKind
from lyricsync.resolver import LyricsResolver

DAY_MS = 86_400_000


@pytest.fixture
def make_resolver(store, persistent, clock, quiet_logger, lyrics_settings):
	def factory(providers, settings=None, caption_provider=None, persistent_store=persistent, library=None):
		return LyricsResolver(
			store,
			settings or lyrics_settings,
			{p.name: p for p in providers},
			persistent=persistent_store,
			caption_provider=caption_provider,
			library=library,
			clock=clock,
			logger=quiet_logger,
		)
	return factory


def word_doc():
	return LyricsDocument(
		kind=SyncKind.WORD,
		lines=(LyricLine("Hi there", 0, 1000, syllables=(Syllable("Hi ", 0, 400), Syllable("there", 400, 600))),),
	)


class TestDeduplication:
	"""Concurrent callers share one provider round trip"""

	@pytest.mark.asyncio
	async def test_concurrent_resolves_hit_provider_once(self, make_resolver, identity, line_document, store):
		provider = FakeProvider("first", result=line_document, delay=0.01)
		resolver = make_resolver([provider, FakeProvider("second")])

		results = await asyncio.gather(*(resolver.resolve(identity) for _ in range(5)))

		assert provider.calls == 1
		assert all(r == results[0] for r in results)
		assert store.inflight_count == 0

	@pytest.mark.asyncio
	async def test_failed_resolution_clears_handle_so_retry_refetches(self, make_resolver, identity, line_document, store):
		provider = FakeProvider("first", error=ProviderError("first", "boom"))
		resolver = make_resolver([provider])

		with pytest.raises(ProviderChainError):
			await resolver.resolve(identity)
		assert store.inflight_count == 0

		provider.error = None
		provider.result = line_document
		result = await resolver.resolve(identity)

		assert result.document == line_document
		assert provider.calls == 2

	@pytest.mark.asyncio
	async def test_abandoning_caller_does_not_cancel_shared_work(self, make_resolver, identity, line_document):
		provider = FakeProvider("first", result=line_document, delay=0.01)
		resolver = make_resolver([provider])

		abandoned = asyncio.ensure_future(resolver.resolve(identity))
		await asyncio.sleep(0)
		waiting = asyncio.ensure_future(resolver.resolve(identity))
		await asyncio.sleep(0)
		abandoned.cancel()

		result = await waiting

		assert result.document == line_document
		assert provider.calls == 1
		assert abandoned.cancelled()

	@pytest.mark.asyncio
	async def test_reset_during_fetch_keeps_caches_empty(self, make_resolver, identity, line_document, store, persistent):
		provider = FakeProvider("first", result=line_document, delay=0.05)
		resolver = make_resolver([provider])

		pending = asyncio.ensure_future(resolver.resolve(identity))
		await asyncio.sleep(0.01)
		store.reset()
		result = await pending

		assert result.document == line_document
		assert not store.has_lyrics(cache_key(identity))
		assert persistent.data == {}

		await resolver.resolve(identity)

		assert provider.calls == 2
		assert store.has_lyrics(cache_key(identity))


class TestProviderChain:
	@pytest.mark.asyncio
	async def test_falls_back_to_second_provider_and_serves_from_memory(self, make_resolver, identity, line_document, clock):
		first = FakeProvider("first", result=None)
		second = FakeProvider("second", result=line_document)
		resolver = make_resolver([first, second])
		clock.now = 42_000

		result = await resolver.resolve(identity)
		again = await resolver.resolve(identity)

		assert result.document == line_document
		assert result.version == 42_000
		assert again is result
		assert first.calls == 1
		assert second.calls == 1

	@pytest.mark.asyncio
	async def test_successful_resolution_is_persisted(self, make_resolver, identity, line_document, persistent, clock):
		resolver = make_resolver([FakeProvider("first", result=line_document)])

		result = await resolver.resolve(identity)

		entry = PersistentCacheEntry.from_dict(persistent.data[cache_key(identity)])
		assert entry.lyrics == line_document
		assert entry.version == result.version
		assert entry.stored_at_ms == clock.now
		assert entry.song_duration == identity.duration

	def test_provider_order_puts_preferred_first_and_drops_excluded(self, make_resolver, lyrics_settings):
		settings = replace(
			lyrics_settings,
			preferred_provider="lrclib",
			provider_order=("kpoe", "custom_kpoe", "lrclib", "local"),
			excluded_providers=("local",),
		)
		resolver = make_resolver([], settings=settings)

		assert resolver.get_provider_order() == ["lrclib", "kpoe", "custom_kpoe"]

	@pytest.mark.asyncio
	async def test_unconfigured_provider_is_skipped(self, make_resolver, identity, line_document):
		custom = FakeProvider("first", result=line_document, available=False)
		second = FakeProvider("second", result=line_document)
		resolver = make_resolver([custom, second])

		await resolver.resolve(identity)

		assert custom.calls == 0
		assert second.calls == 1

	@pytest.mark.asyncio
	async def test_caption_fallback_runs_last_only_with_captions(self, make_resolver, identity, line_document):
		captions = FakeProvider("youtube", result=line_document)
		resolver = make_resolver([FakeProvider("first"), FakeProvider("second")], caption_provider=captions)

		with pytest.raises(NotFoundError):
			await resolver.resolve(identity)
		assert captions.calls == 0

		result = await resolver.resolve(identity, captions={"captionTracks": [{"baseUrl": "x"}]})

		assert result.document == line_document
		assert captions.calls == 1
		assert captions.options[0].captions == {"captionTracks": [{"baseUrl": "x"}]}

	@pytest.mark.asyncio
	async def test_every_provider_failing_raises_aggregate_error(self, make_resolver, identity):
		resolver = make_resolver([
			FakeProvider("first", error=ProviderError("first", "timeout")),
			FakeProvider("second", error=asyncio.TimeoutError()),
		])

		with pytest.raises(ProviderChainError) as exc_info:
			await resolver.resolve(identity)

		assert [name for name, _ in exc_info.value.errors] == ["first", "second"]

	@pytest.mark.asyncio
	async def test_malformed_payload_is_recorded_as_invalid_response(self, make_resolver, identity):
		resolver = make_resolver([
			FakeProvider("first", error=ValueError("could not convert string to float: 'oops'")),
			FakeProvider("second", error=AttributeError("'list' object has no attribute 'get'")),
		])

		with pytest.raises(ProviderChainError) as exc_info:
			await resolver.resolve(identity)

		assert [name for name, _ in exc_info.value.errors] == ["first", "second"]
		assert all(isinstance(e, InvalidResponseError) for _, e in exc_info.value.errors)

	@pytest.mark.asyncio
	async def test_malformed_captions_end_in_not_found(self, make_resolver, identity):
		captions = FakeProvider("youtube", error=ValueError("could not convert string to float: 'oops'"))
		resolver = make_resolver([FakeProvider("first"), FakeProvider("second")], caption_provider=captions)

		with pytest.raises(NotFoundError):
			await resolver.resolve(identity, captions={"captionTracks": [{"baseUrl": "x"}]})

		assert captions.calls == 1

	@pytest.mark.asyncio
	async def test_partial_failure_is_plain_not_found(self, make_resolver, identity):
		resolver = make_resolver([
			FakeProvider("first", error=ProviderError("first", "HTTP 500")),
			FakeProvider("second", result=None),
		])

		with pytest.raises(NotFoundError) as exc_info:
			await resolver.resolve(identity)

		assert not isinstance(exc_info.value, ProviderChainError)

	@pytest.mark.asyncio
	async def test_empty_document_counts_as_miss(self, make_resolver, identity, line_document):
		empty = LyricsDocument(kind=SyncKind.LINE, lines=(LyricLine("", 0, 1000),))
		second = FakeProvider("second", result=line_document)
		resolver = make_resolver([FakeProvider("first", result=empty), second])

		result = await resolver.resolve(identity)

		assert result.document == line_document


class TestCachePolicy:
	async def _seed(self, persistent, identity, document, stored_at):
		key = cache_key(identity)
		entry = PersistentCacheEntry(key, document, version=7, stored_at_ms=stored_at, song_duration=identity.duration)
		await persistent.set(key, entry.to_dict())
		return key

	@pytest.mark.asyncio
	async def test_entry_within_window_is_served(self, make_resolver, identity, line_document, persistent, clock):
		await self._seed(persistent, identity, line_document, stored_at=0)
		provider = FakeProvider("first", result=make_line_document((0, 1000)))
		resolver = make_resolver([provider])
		clock.now = DAY_MS - 1

		result = await resolver.resolve(identity)

		assert result.version == 7
		assert result.document == line_document
		assert provider.calls == 0

	@pytest.mark.asyncio
	async def test_entry_past_window_is_deleted_and_refetched(self, make_resolver, identity, line_document, persistent, clock):
		key = await self._seed(persistent, identity, line_document, stored_at=0)
		fresh = make_line_document((0, 1000), texts=["fresh"])
		provider = FakeProvider("first", result=fresh)
		resolver = make_resolver([provider])
		clock.now = DAY_MS + 1

		result = await resolver.resolve(identity)

		assert provider.calls == 1
		assert result.document == fresh
		assert persistent.data[key]["version"] == DAY_MS + 1

	@pytest.mark.asyncio
	async def test_strategy_none_never_reads_or_writes_and_bypasses_http_cache(
			self, make_resolver, identity, line_document, persistent, lyrics_settings):
		await self._seed(persistent, identity, make_line_document((0, 1000)), stored_at=0)
		provider = FakeProvider("first", result=line_document)
		resolver = make_resolver([provider], settings=replace(lyrics_settings, cache_strategy=CacheStrategy.NONE))

		result = await resolver.resolve(identity)

		assert result.document == line_document
		assert persistent.data[cache_key(identity)]["version"] == 7
		assert provider.options[0].bypass_cache is True

	@pytest.mark.asyncio
	async def test_force_reload_skips_caches_and_restamps_version(self, make_resolver, identity, line_document, clock):
		provider = FakeProvider("first", result=line_document)
		resolver = make_resolver([provider])
		first = await resolver.resolve(identity)
		clock.now += 500

		second = await resolver.resolve(identity, force_reload=True)

		assert provider.calls == 2
		assert second.version == first.version + 500
		assert provider.options[0].bypass_cache is False
		assert provider.options[1].bypass_cache is True


class TestLocalLibrary:
	"""Uploaded lyrics are checked after the caches, before any network provider"""

	@pytest.fixture
	def library(self, quiet_logger):
		return LocalLyricsLibrary(MemoryStore(), clock=FakeClock(1_700_000_000_000), logger=quiet_logger)

	@pytest.mark.asyncio
	async def test_upload_wins_over_network_providers(self, make_resolver, identity, line_document, library, store):
		uploaded = make_line_document((0, 2000), texts=["my own lyrics"])
		song_id = await library.upload(identity, uploaded)
		provider = FakeProvider("first", result=line_document)
		resolver = make_resolver([provider], library=library)

		result = await resolver.resolve(identity)

		assert result.document == uploaded
		assert result.version == song_id
		assert provider.calls == 0
		assert store.get_lyrics(cache_key(identity)) is result

	@pytest.mark.asyncio
	async def test_persistent_cache_is_checked_before_library(self, make_resolver, identity, line_document, library,
															  persistent):
		entry = PersistentCacheEntry(cache_key(identity), line_document, version=7, stored_at_ms=0)
		await persistent.set(cache_key(identity), entry.to_dict())
		await library.upload(identity, make_line_document((0, 2000), texts=["my own lyrics"]))
		resolver = make_resolver([FakeProvider("first")], library=library)

		result = await resolver.resolve(identity)

		assert result.version == 7

	@pytest.mark.asyncio
	async def test_force_reload_skips_library(self, make_resolver, identity, line_document, library):
		await library.upload(identity, make_line_document((0, 2000), texts=["my own lyrics"]))
		provider = FakeProvider("first", result=line_document)
		resolver = make_resolver([provider], library=library)

		result = await resolver.resolve(identity, force_reload=True)

		assert result.document == line_document
		assert provider.calls == 1

	@pytest.mark.asyncio
	async def test_other_songs_still_use_providers(self, make_resolver, identity, line_document, library):
		await library.upload(replace(identity, title="Red"), make_line_document((0, 2000)))
		provider = FakeProvider("first", result=line_document)
		resolver = make_resolver([provider], library=library)

		result = await resolver.resolve(identity)

		assert result.document == line_document
		assert provider.calls == 1


class TestEmbeddedLyrics:
	@pytest.mark.asyncio
	async def test_embedded_document_is_returned_without_fetching(self, make_resolver, identity, line_document):
		provider = FakeProvider("first", result=word_doc())
		resolver = make_resolver([provider])

		result = await resolver.resolve(identity, embedded=line_document)

		assert result.document == line_document
		assert provider.calls == 0

	@pytest.mark.asyncio
	async def test_bypass_prefers_embedded_over_line_synced_fetch(self, make_resolver, identity, line_document, lyrics_settings):
		embedded = make_line_document((0, 1000), texts=["embedded"])
		provider = FakeProvider("first", result=line_document)
		resolver = make_resolver([provider], settings=replace(lyrics_settings, ttml_bypass=True))

		result = await resolver.resolve(identity, embedded=embedded)

		assert provider.calls == 1
		assert result.document == embedded

	@pytest.mark.asyncio
	async def test_bypass_keeps_word_synced_fetch(self, make_resolver, identity, lyrics_settings):
		embedded = make_line_document((0, 1000), texts=["embedded"])
		fetched = word_doc()
		resolver = make_resolver([FakeProvider("first", result=fetched)], settings=replace(lyrics_settings, ttml_bypass=True))

		result = await resolver.resolve(identity, embedded=embedded)

		assert result.document == fetched

	@pytest.mark.asyncio
	async def test_bypass_returns_embedded_when_nothing_found(self, make_resolver, identity, lyrics_settings):
		embedded = make_line_document((0, 1000), texts=["embedded"])
		resolver = make_resolver(
			[FakeProvider("first", error=ProviderError("first", "down"))],
			settings=replace(lyrics_settings, ttml_bypass=True),
		)

		result = await resolver.resolve(identity, embedded=embedded)

		assert result.document == embedded

	@pytest.mark.asyncio
	async def test_word_synced_embedded_skips_bypass(self, make_resolver, identity, lyrics_settings):
		provider = FakeProvider("first", result=make_line_document((0, 1000)))
		resolver = make_resolver([provider], settings=replace(lyrics_settings, ttml_bypass=True))

		result = await resolver.resolve(identity, embedded=word_doc())

		assert result.document == word_doc()
		assert provider.calls == 0

	@pytest.mark.asyncio
	async def test_bypass_returns_embedded_when_captions_are_malformed(self, make_resolver, identity, lyrics_settings):
		embedded = make_line_document((0, 1000), texts=["embedded"])
		captions = FakeProvider("youtube", error=ValueError("could not convert string to float: 'oops'"))
		resolver = make_resolver(
			[FakeProvider("first")],
			settings=replace(lyrics_settings, ttml_bypass=True),
			caption_provider=captions,
		)

		result = await resolver.resolve(identity, embedded=embedded, captions={"captionTracks": [{"baseUrl": "x"}]})

		assert result.document == embedded
		assert captions.calls == 1
