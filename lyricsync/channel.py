"""
Typed request/response messaging between a display and the resolvers.
Requests travel through an asyncio queue and responses are matched back to
callers by request id.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .errors import ChannelError, LyricsError, NotFoundError
from .logger import LOGGER
from .models import LyricsDocument, SongIdentity


class MessageType(str, Enum):
	FETCH_LYRICS = "FETCH_LYRICS"
	TRANSLATE_LYRICS = "TRANSLATE_LYRICS"
	RESET_CACHE = "RESET_CACHE"
	GET_CACHED_SIZE = "GET_CACHED_SIZE"
	UPLOAD_LOCAL_LYRICS = "UPLOAD_LOCAL_LYRICS"
	GET_LOCAL_LYRICS_LIST = "GET_LOCAL_LYRICS_LIST"
	DELETE_LOCAL_LYRICS = "DELETE_LOCAL_LYRICS"
	FETCH_LOCAL_LYRICS = "FETCH_LOCAL_LYRICS"


@dataclass(frozen=True)
class Request:
	type: MessageType
	payload: dict = field(default_factory=dict)
	request_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass(frozen=True)
class Response:
	request_id: str
	success: bool
	data: Any = None
	error: Optional[str] = None


class MessageHandler:
	"""Routes requests to the resolvers, caches and local library"""

	def __init__(self, lyrics_resolver, translation_resolver, store, stores=None, library=None, logger=None):
		self.lyrics_resolver = lyrics_resolver
		self.translation_resolver = translation_resolver
		self.store = store
		self.stores = stores
		self.library = library
		self.logger = logger or LOGGER
		self._routes = {
			MessageType.FETCH_LYRICS: self._fetch_lyrics,
			MessageType.TRANSLATE_LYRICS: self._translate_lyrics,
			MessageType.RESET_CACHE: self._reset_cache,
			MessageType.GET_CACHED_SIZE: self._cached_size,
			MessageType.UPLOAD_LOCAL_LYRICS: self._upload_local,
			MessageType.GET_LOCAL_LYRICS_LIST: self._list_local,
			MessageType.DELETE_LOCAL_LYRICS: self._delete_local,
			MessageType.FETCH_LOCAL_LYRICS: self._fetch_local,
		}

	async def handle(self, request):
		route = self._routes.get(request.type)
		if route is None:
			return Response(request.request_id, False, error=f"Unknown message type: {request.type}")
		try:
			data = await route(request.payload or {})
		except LyricsError as e:
			self.logger.log_warn(f"{request.type.value} failed: {e}")
			return Response(request.request_id, False, error=str(e))
		except (AttributeError, KeyError, TypeError, ValueError) as e:
			self.logger.log_warn(f"{request.type.value} bad payload: {e}")
			return Response(request.request_id, False, error=f"Invalid payload: {e}")
		return Response(request.request_id, True, data=data)

	def _require_library(self):
		if self.library is None:
			raise ChannelError("Local lyrics library is not available")
		return self.library

	async def _fetch_lyrics(self, payload):
		identity = SongIdentity.from_dict(payload["song_info"])
		embedded = payload.get("embedded")
		versioned = await self.lyrics_resolver.resolve(
			identity,
			force_reload=bool(payload.get("force_reload", False)),
			embedded=LyricsDocument.from_dict(embedded) if embedded else None,
			captions=payload.get("captions"),
		)
		return versioned.to_dict()

	async def _translate_lyrics(self, payload):
		identity = SongIdentity.from_dict(payload["song_info"])
		record = await self.translation_resolver.resolve(
			identity,
			payload["action"],
			payload["target_lang"],
			force_reload=bool(payload.get("force_reload", False)),
		)
		return record.to_dict()

	async def _reset_cache(self, payload):
		self.store.reset()
		if self.stores is not None:
			await self.stores.clear()
		self.logger.log_info("Lyrics caches reset")
		return {"cleared": True}

	async def _cached_size(self, payload):
		memory = self.store.cached_size()
		persistent = await self.stores.size_bytes() if self.stores is not None else 0
		return {"memory_bytes": memory, "persistent_bytes": persistent, "size_bytes": memory + persistent}

	async def _upload_local(self, payload):
		library = self._require_library()
		song_id = await library.upload(
			SongIdentity.from_dict(payload["song_info"]),
			LyricsDocument.from_dict(payload["lyrics"]),
		)
		return {"song_id": song_id}

	async def _list_local(self, payload):
		library = self._require_library()
		return {"lyrics": [entry.summary() for entry in await library.list()]}

	async def _delete_local(self, payload):
		library = self._require_library()
		song_id = int(payload["song_id"])
		await library.delete(song_id)
		return {"song_id": song_id}

	async def _fetch_local(self, payload):
		library = self._require_library()
		entry = await library.get(int(payload["song_id"]))
		if entry is None:
			raise NotFoundError(f"No local lyrics with id {payload['song_id']}")
		return {**entry.summary(), "lyrics": entry.document.to_dict()}


class RequestChannel:
	"""Queue transport: callers await their own response, matched by request id"""

	def __init__(self, handler, maxsize=0, logger=None):
		self.handler = handler
		self.logger = logger or LOGGER
		self._queue = asyncio.Queue(maxsize)
		self._pending = {}
		self._tasks = set()
		self._worker = None
		self._closed = False

	async def __aenter__(self):
		self.start()
		return self

	async def __aexit__(self, exc_type, exc, tb):
		await self.close()

	@property
	def pending_count(self):
		return len(self._pending)

	def start(self):
		if self._worker is None:
			self._worker = asyncio.ensure_future(self._serve())

	async def request(self, message_type, payload=None, timeout=None):
		if self._closed:
			raise ChannelError("Channel is closed")
		try:
			message_type = MessageType(message_type)
		except ValueError:
			raise ChannelError(f"Unknown message type: {message_type}") from None

		request = Request(message_type, dict(payload or {}))
		future = asyncio.get_running_loop().create_future()
		self._pending[request.request_id] = future
		try:
			await self._queue.put(request)
			return await asyncio.wait_for(future, timeout)
		finally:
			self._pending.pop(request.request_id, None)

	async def _serve(self):
		while True:
			request = await self._queue.get()
			task = asyncio.ensure_future(self._dispatch(request))
			self._tasks.add(task)
			task.add_done_callback(self._tasks.discard)
			self._queue.task_done()

	async def _dispatch(self, request):
		try:
			response = await self.handler.handle(request)
		except Exception as e:
			self.logger.log_error(f"Handler failed for {request.type.value}: {e}")
			response = Response(request.request_id, False, error=str(e))
		future = self._pending.get(response.request_id)
		if future is None or future.done():
			self.logger.log_debug(f"Dropping response for abandoned request {response.request_id}")
			return
		future.set_result(response)

	async def close(self):
		self._closed = True
		tasks = list(self._tasks)
		if self._worker is not None:
			tasks.append(self._worker)
			self._worker = None
		for task in tasks:
			task.cancel()
		await asyncio.gather(*tasks, return_exceptions=True)
		for future in self._pending.values():
			if not future.done():
				future.set_exception(ChannelError("Channel closed before response"))
		self._pending.clear()
