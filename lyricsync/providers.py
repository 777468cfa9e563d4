"""
Lyric providers. Each exposes `fetch(identity, options)` returning a
LyricsDocument or None for an ordinary miss; transport and payload failures
raise ProviderError so the resolver can record them and move on.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Optional

import aiohttp

from .errors import InvalidResponseError, ProviderError
from .formats import parse_kpoe, parse_lrclib, parse_youtube_captions
from .logger import LOGGER

LRCLIB_URL = "https://lrclib.net/api/get"
NO_CACHE_HEADERS = {"Cache-Control": "no-cache", "Pragma": "no-cache"}


@dataclass(frozen=True)
class FetchOptions:
	bypass_cache: bool = False
	source_order: str = ""
	captions: Optional[dict] = None
	timeout: float = 15

	@property
	def headers(self):
		return dict(NO_CACHE_HEADERS) if self.bypass_cache else {}


class LyricsProvider:
	name = "provider"

	@property
	def available(self):
		"""False when the provider is missing required configuration"""
		return True

	async def fetch(self, identity, options):
		raise NotImplementedError


# ==============
#  HTTP
# ==============
class HttpProvider(LyricsProvider):
	"""Shared aiohttp GET handling; creates its own session when none is passed"""

	def __init__(self, session=None, logger=None):
		self.session = session
		self.logger = logger or LOGGER

	async def _get_json(self, url, params, options):
		own_session = False
		session = self.session
		if session is None:
			session = aiohttp.ClientSession()
			own_session = True

		try:
			async with session.get(
				url,
				params=params,
				headers=options.headers,
				timeout=aiohttp.ClientTimeout(total=options.timeout),
			) as response:
				if response.status in (403, 404):
					self.logger.log_debug(f"{self.name}: HTTP {response.status} for {url}")
					return None
				if response.status != 200:
					raise ProviderError(self.name, f"HTTP {response.status}")
				try:
					return await response.json(content_type=None)
				except (aiohttp.ContentTypeError, json.JSONDecodeError):
					content = await response.text()
					self.logger.log_debug(f"{self.name}: invalid JSON. Raw response: {content[:200]}")
					raise InvalidResponseError(self.name, "invalid JSON") from None
		except (aiohttp.ClientError, asyncio.TimeoutError) as e:
			raise ProviderError(self.name, f"network error: {e}") from e
		finally:
			if own_session:
				await session.close()


class LrclibProvider(HttpProvider):
	name = "lrclib"

	def __init__(self, session=None, url=LRCLIB_URL, logger=None):
		super().__init__(session, logger)
		self.url = url

	async def fetch(self, identity, options):
		params = {"artist_name": identity.artist, "track_name": identity.title}
		if identity.album:
			params["album_name"] = identity.album
		if identity.duration:
			params["duration"] = int(round(float(identity.duration)))

		self.logger.log_debug(f"Querying LRCLIB API: {identity.artist} - {identity.title}")
		data = await self._get_json(self.url, params, options)
		if data is None:
			return None
		document = parse_lrclib(data)
		if document is not None:
			self.logger.log_info(f"LRCLIB returned {len(document.lines)} synced lines")
		return document


class KPoeProvider(HttpProvider):
	"""Lyrics+ style backend tried server by server"""

	def __init__(self, servers, name="kpoe", session=None, logger=None):
		super().__init__(session, logger)
		self.servers = [s for s in servers if s]
		self.name = name

	@property
	def available(self):
		return bool(self.servers)

	@staticmethod
	def _endpoint(base_url):
		return f"{base_url if base_url.endswith('/') else base_url + '/'}v2/lyrics/get"

	def _params(self, identity, options):
		params = {"title": identity.title, "artist": identity.artist, "duration": str(identity.duration)}
		if identity.album:
			params["album"] = identity.album
		if options.source_order:
			params["source"] = options.source_order
		if options.bypass_cache:
			params["forceReload"] = "true"
		return params

	async def fetch(self, identity, options):
		params = self._params(identity, options)
		errors = []
		for base_url in self.servers:
			try:
				data = await self._get_json(self._endpoint(base_url), params, options)
			except ProviderError as e:
				self.logger.log_warn(f"{self.name} server {base_url} failed: {e}")
				errors.append(e)
				continue
			if data is None:
				continue
			document = parse_kpoe(data)
			if document is not None and not document.is_empty:
				return document

		# Every server failing counts as a provider failure, a clean miss does not
		if errors and len(errors) == len(self.servers):
			raise errors[-1]
		return None


class LocalLyricsProvider(LyricsProvider):
	name = "local"

	def __init__(self, library):
		self.library = library

	async def fetch(self, identity, options):
		entry = await self.library.find(identity.title, identity.artist)
		return entry.document if entry else None


class YouTubeCaptionProvider(HttpProvider):
	"""Last-resort provider reading the platform's own caption track"""

	name = "youtube"

	@staticmethod
	def select_track(captions):
		tracks = (captions or {}).get("captionTracks") or []
		valid = [
			t for t in tracks
			if t.get("kind") != "asr" and not str(t.get("vssId") or "").startswith("a.")
		]
		for track in valid:
			if track.get("isDefault"):
				return track
		return valid[0] if valid else None

	async def fetch(self, identity, options):
		track = self.select_track(options.captions)
		if track is None:
			return None
		url = track.get("baseUrl") or track.get("url")
		if not url:
			return None
		data = await self._get_json(url, {"fmt": "json3"}, options)
		if data is None:
			return None
		return parse_youtube_captions(data, identity)


def build_providers(settings, library=None, session=None, logger=None):
	"""Name -> provider map for every provider the configuration can reference"""
	providers = {
		"kpoe": KPoeProvider(settings.kpoe_servers, "kpoe", session, logger),
		"custom_kpoe": KPoeProvider(
			[settings.custom_provider_url] if settings.custom_provider_url else [],
			"custom_kpoe", session, logger,
		),
		"lrclib": LrclibProvider(session, logger=logger),
	}
	if library is not None:
		providers["local"] = LocalLyricsProvider(library)
	return providers
