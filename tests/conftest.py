"""
Shared fixtures and test doubles.
"""

import asyncio
import copy
import json

import pytest

from lyricsync.cache import PersistentStore, ResolutionStore
from lyricsync.config import CacheStrategy, LyricsSettings
from lyricsync.logger import Logger
from lyricsync.models import LyricLine, LyricsDocument, SongIdentity, Syllable, SyncKind, VersionedLyrics
from lyricsync.providers import LyricsProvider
from lyricsync.render import build_render_model
from lyricsync.scheduler import Scheduler


class ManualHandle:
	def __init__(self, when, seq, callback, args):
		self.when = when
		self.seq = seq
		self.callback = callback
		self.args = args
		self.cancelled = False

	def cancel(self):
		self.cancelled = True


class ManualScheduler(Scheduler):
	"""Timers fire only when the test advances time"""

	def __init__(self, now=0.0):
		self.now = now
		self._timers = []
		self._seq = 0

	def now_ms(self):
		return self.now

	def call_later(self, delay_ms, callback, *args):
		self._seq += 1
		handle = ManualHandle(self.now + max(0, delay_ms), self._seq, callback, args)
		self._timers.append(handle)
		return handle

	@property
	def pending(self):
		return [h for h in self._timers if not h.cancelled]

	def advance(self, ms):
		target = self.now + ms
		while True:
			due = [h for h in self._timers if not h.cancelled and h.when <= target]
			if not due:
				break
			handle = min(due, key=lambda h: (h.when, h.seq))
			self._timers.remove(handle)
			self.now = handle.when
			handle.callback(*handle.args)
		self.now = target
		self._timers = [h for h in self._timers if not h.cancelled]


class FakeClock:
	def __init__(self, now=1_000):
		self.now = now

	def __call__(self):
		return self.now


class FakeProvider(LyricsProvider):
	"""Records calls; returns `result` or raises `error` after an optional delay"""

	def __init__(self, name, result=None, error=None, delay=0, available=True):
		self.name = name
		self.result = result
		self.error = error
		self.delay = delay
		self._available = available
		self.calls = 0
		self.options = []

	@property
	def available(self):
		return self._available

	async def fetch(self, identity, options):
		self.calls += 1
		self.options.append(options)
		if self.delay:
			await asyncio.sleep(self.delay)
		if self.error is not None:
			raise self.error
		return self.result


class MemoryStore(PersistentStore):
	def __init__(self):
		self.data = {}

	async def get(self, key):
		return copy.deepcopy(self.data.get(key))

	async def set(self, key, value):
		self.data[key] = copy.deepcopy(value)

	async def delete(self, key):
		self.data.pop(key, None)

	async def clear(self):
		self.data.clear()

	async def items(self):
		return [(k, copy.deepcopy(v)) for k, v in self.data.items()]

	async def size_bytes(self):
		return sum(len(json.dumps(v)) for v in self.data.values())


def make_line_document(*spans, texts=None):
	texts = texts or [f"line {i}" for i in range(len(spans))]
	return LyricsDocument(
		kind=SyncKind.LINE,
		lines=tuple(LyricLine(text=t, start_ms=s, end_ms=e) for t, (s, e) in zip(texts, spans)),
	)


def make_model(*spans, version=1):
	return build_render_model(VersionedLyrics(make_line_document(*spans), version))


@pytest.fixture
def quiet_logger(tmp_path):
	return Logger(log_dir=str(tmp_path / "logs"), log_level="FATAL")


@pytest.fixture
def identity():
	return SongIdentity(title="Blue", artist="Eiffel 65", album="Europop", duration=220)


@pytest.fixture
def line_document():
	return make_line_document((0, 2000), (2000, 4000), texts=["First line", "Second line"])


@pytest.fixture
def word_document():
	return LyricsDocument(
		kind=SyncKind.WORD,
		lines=(
			LyricLine(
				text="Hello world",
				start_ms=0,
				end_ms=3000,
				syllables=(
					Syllable("Hel", 0, 500),
					Syllable("lo ", 500, 500),
					Syllable("world", 1000, 1000),
				),
			),
		),
	)


@pytest.fixture
def three_line_model():
	return make_model((0, 5000), (5000, 10000), (10000, 15000))


@pytest.fixture
def store():
	return ResolutionStore()


@pytest.fixture
def persistent():
	return MemoryStore()


@pytest.fixture
def clock():
	return FakeClock()


@pytest.fixture
def scheduler():
	return ManualScheduler()


@pytest.fixture
def lyrics_settings():
	return LyricsSettings(
		preferred_provider="first",
		provider_order=("first", "second"),
		cache_strategy=CacheStrategy.CONSERVATIVE,
		kpoe_servers=(),
	)
