"""
User-uploaded lyrics, stored in the persistent "local" namespace
"""

from dataclasses import dataclass

from .logger import LOGGER
from .models import LyricsDocument, SongIdentity
from .scheduler import wall_clock_ms


@dataclass(frozen=True)
class LocalLyricsEntry:
	song_id: int
	identity: SongIdentity
	document: LyricsDocument
	timestamp: int

	def summary(self):
		return {"song_id": self.song_id, "song_info": self.identity.to_dict(), "timestamp": self.timestamp}


class LocalLyricsLibrary:
	"""CRUD over uploaded documents keyed by song id (upload timestamp)"""

	def __init__(self, store, clock=None, logger=None):
		self.store = store
		self.clock = clock or wall_clock_ms
		self.logger = logger or LOGGER

	@staticmethod
	def _entry(value):
		return LocalLyricsEntry(
			song_id=int(value["song_id"]),
			identity=SongIdentity.from_dict(value["song_info"]),
			document=LyricsDocument.from_dict(value["lyrics"]),
			timestamp=int(value.get("timestamp") or value["song_id"]),
		)

	async def upload(self, identity, document):
		"""Store a document for a song and return its new song id"""
		song_id = int(self.clock())
		await self.store.set(str(song_id), {
			"song_id": song_id,
			"song_info": identity.to_dict(),
			"lyrics": document.to_dict(),
			"timestamp": song_id,
		})
		self.logger.log_info(f"Uploaded local lyrics {song_id} for {identity.artist} - {identity.title}")
		return song_id

	async def list(self):
		entries = [self._entry(value) for _, value in await self.store.items()]
		return sorted(entries, key=lambda entry: entry.song_id)

	async def get(self, song_id):
		value = await self.store.get(str(song_id))
		return self._entry(value) if value else None

	async def delete(self, song_id):
		await self.store.delete(str(song_id))
		self.logger.log_info(f"Deleted local lyrics {song_id}")

	async def find(self, title, artist):
		"""First uploaded entry matching title and artist exactly"""
		for entry in await self.list():
			if entry.identity.title == title and entry.identity.artist == artist:
				return entry
		return None
