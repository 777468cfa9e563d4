"""
Cache key derivation, the in-memory resolution store with its in-flight
registry, and the persistent key/value stores (JSON files or Redis).
"""

import asyncio
import hashlib
import json
import os

from .logger import LOGGER


# ==============
#  CACHE KEYS
# ==============
def cache_key(identity):
	"""Stable key shared by the memory cache, persistent cache and in-flight registry"""
	return f"{identity.title} - {identity.artist} - {identity.album} - {identity.duration}"


def translation_key(identity, action, target_language):
	action = getattr(action, "value", action)
	return f"{cache_key(identity)} - {action} - {target_language}"


# ==============
#  MEMORY STORE
# ==============
class ResolutionStore:
	"""Session-scoped memory caches plus the in-flight registry.

	Lyrics entries hold VersionedLyrics, translation entries hold
	TranslationRecord. In-flight handles are asyncio tasks; a handle is
	registered only when none exists for the key and is cleared by the task
	itself when it settles.
	"""

	def __init__(self):
		self._lyrics = {}
		self._translations = {}
		self._inflight = {}
		# Bumped by reset(); work started under an older generation must not write back
		self.generation = 0

	# Lyrics
	def get_lyrics(self, key):
		return self._lyrics.get(key)

	def set_lyrics(self, key, versioned):
		self._lyrics[key] = versioned

	def has_lyrics(self, key):
		return key in self._lyrics

	def delete_lyrics(self, key):
		self._lyrics.pop(key, None)

	# Translations
	def get_translation(self, key):
		return self._translations.get(key)

	def set_translation(self, key, record):
		self._translations[key] = record

	def delete_translation(self, key):
		self._translations.pop(key, None)

	# In-flight registry
	def get_inflight(self, key):
		return self._inflight.get(key)

	def register_inflight(self, key, task):
		if key in self._inflight:
			raise RuntimeError(f"Resolution already in flight for {key}")
		self._inflight[key] = task

	def clear_inflight(self, key, task=None):
		if task is None or self._inflight.get(key) is task:
			self._inflight.pop(key, None)

	@property
	def inflight_count(self):
		return len(self._inflight)

	def cached_size(self):
		"""Approximate JSON size of the memory caches, in bytes"""
		size = 0
		for versioned in self._lyrics.values():
			size += len(json.dumps(versioned.to_dict(), ensure_ascii=False).encode("utf-8"))
		for record in self._translations.values():
			size += len(json.dumps(record.to_dict(), ensure_ascii=False).encode("utf-8"))
		return size

	def reset(self):
		"""Drop cached entries; in-flight work keeps running but no longer writes back"""
		self._lyrics.clear()
		self._translations.clear()
		self._inflight.clear()
		self.generation += 1


# ==============
#  PERSISTENT STORES
# ==============
class PersistentStore:
	"""Async key/value store of JSON-serializable dicts"""

	async def get(self, key):
		raise NotImplementedError

	async def set(self, key, value):
		raise NotImplementedError

	async def delete(self, key):
		raise NotImplementedError

	async def clear(self):
		raise NotImplementedError

	async def items(self):
		raise NotImplementedError

	async def size_bytes(self):
		raise NotImplementedError


def key_digest(key):
	"""SHA-1 hex digest of a cache key, used as its file name"""
	return hashlib.sha1(key.encode("utf-8")).hexdigest()


class JsonFileStore(PersistentStore):
	"""One JSON file per key under `<cache_dir>/<namespace>`"""

	def __init__(self, cache_dir, namespace, logger=None):
		self.folder = os.path.join(os.path.expanduser(cache_dir), namespace)
		self.namespace = namespace
		self.logger = logger or LOGGER

	def _path(self, key):
		return os.path.join(self.folder, f"{key_digest(key)}.json")

	def _read(self, key):
		path = self._path(key)
		if not os.path.exists(path):
			return None
		try:
			with open(path, "r", encoding="utf-8") as f:
				record = json.load(f)
		except (OSError, json.JSONDecodeError) as e:
			self.logger.log_warn(f"Unreadable cache file {path}: {e}")
			return None
		return record.get("value")

	def _write(self, key, value):
		os.makedirs(self.folder, exist_ok=True)
		path = self._path(key)
		tmp_path = f"{path}.tmp"
		with open(tmp_path, "w", encoding="utf-8") as f:
			json.dump({"key": key, "value": value}, f, ensure_ascii=False)
		os.replace(tmp_path, path)

	def _remove(self, key):
		try:
			os.remove(self._path(key))
		except FileNotFoundError:
			pass

	def _files(self):
		if not os.path.isdir(self.folder):
			return []
		return [os.path.join(self.folder, f) for f in os.listdir(self.folder) if f.endswith(".json")]

	def _clear(self):
		for path in self._files():
			try:
				os.remove(path)
			except FileNotFoundError:
				pass

	def _items(self):
		items = []
		for path in self._files():
			try:
				with open(path, "r", encoding="utf-8") as f:
					record = json.load(f)
			except (OSError, json.JSONDecodeError) as e:
				self.logger.log_warn(f"Skipping unreadable cache file {path}: {e}")
				continue
			items.append((record["key"], record["value"]))
		return items

	def _size(self):
		total = 0
		for path in self._files():
			try:
				total += os.path.getsize(path)
			except FileNotFoundError:
				pass
		return total

	async def _run(self, func, *args):
		loop = asyncio.get_running_loop()
		return await loop.run_in_executor(None, func, *args)

	async def get(self, key):
		return await self._run(self._read, key)

	async def set(self, key, value):
		await self._run(self._write, key, value)

	async def delete(self, key):
		await self._run(self._remove, key)

	async def clear(self):
		await self._run(self._clear)

	async def items(self):
		return await self._run(self._items)

	async def size_bytes(self):
		return await self._run(self._size)


class RedisStore(PersistentStore):
	"""Redis hash-per-namespace store built on redis.asyncio"""

	def __init__(self, client, namespace, prefix="lyricsync"):
		self.client = client
		self.namespace = namespace
		self.hash_name = f"{prefix}:{namespace}"

	async def get(self, key):
		raw = await self.client.hget(self.hash_name, key)
		if raw is None:
			return None
		return json.loads(raw)

	async def set(self, key, value):
		await self.client.hset(self.hash_name, key, json.dumps(value, ensure_ascii=False))

	async def delete(self, key):
		await self.client.hdel(self.hash_name, key)

	async def clear(self):
		await self.client.delete(self.hash_name)

	async def items(self):
		raw = await self.client.hgetall(self.hash_name)
		return [
			(k.decode("utf-8") if isinstance(k, bytes) else k, json.loads(v))
			for k, v in raw.items()
		]

	async def size_bytes(self):
		raw = await self.client.hgetall(self.hash_name)
		return sum(len(k) + len(v) for k, v in raw.items())


class CacheStores:
	"""The three persistent namespaces used by the resolvers"""

	def __init__(self, lyrics, translations, local):
		self.lyrics = lyrics
		self.translations = translations
		self.local = local

	async def size_bytes(self):
		return (await self.lyrics.size_bytes()) + (await self.translations.size_bytes())

	async def clear(self):
		await self.lyrics.clear()
		await self.translations.clear()


def open_stores(settings, logger=None):
	"""Build persistent stores from settings: Redis when enabled, JSON files otherwise"""
	logger = logger or LOGGER
	if settings.redis.enabled:
		import redis.asyncio as redis

		client = redis.Redis(
			host=settings.redis.host,
			port=settings.redis.port,
			db=settings.redis.db,
			decode_responses=True,
		)
		logger.log_info(f"Using Redis cache at {settings.redis.host}:{settings.redis.port}")
		prefix = settings.redis.prefix
		return CacheStores(
			RedisStore(client, "lyrics", prefix),
			RedisStore(client, "translations", prefix),
			RedisStore(client, "local", prefix),
		)

	cache_dir = settings.lyrics.cache_dir
	logger.log_info(f"Using file cache at {cache_dir}")
	return CacheStores(
		JsonFileStore(cache_dir, "lyrics", logger),
		JsonFileStore(cache_dir, "translations", logger),
		JsonFileStore(cache_dir, "local", logger),
	)
