"""
Core lyric data types.

Documents are immutable: every transformation (translation, romanization,
retiming) produces a new document through dataclasses.replace, so a cached
VersionedLyrics can be shared between callers without copying.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional


class SyncKind(str, Enum):
	LINE = "Line"
	WORD = "Word"
	NONE = "None"

	@classmethod
	def parse(cls, value):
		if isinstance(value, cls):
			return value
		text = str(value or "").strip().lower()
		for kind in cls:
			if kind.value.lower() == text:
				return kind
		return cls.NONE


@dataclass(frozen=True)
class SongIdentity:
	title: str
	artist: str
	album: str = ""
	duration: float = 0

	def to_dict(self):
		return {"title": self.title, "artist": self.artist, "album": self.album, "duration": self.duration}

	@classmethod
	def from_dict(cls, data):
		return cls(
			title=data.get("title") or "",
			artist=data.get("artist") or "",
			album=data.get("album") or "",
			duration=data.get("duration") or 0,
		)


@dataclass(frozen=True)
class Syllable:
	text: str
	start_offset_ms: float
	duration_ms: float
	is_background: bool = False
	romanized_text: Optional[str] = None

	def to_dict(self):
		return {
			"text": self.text,
			"start_offset_ms": self.start_offset_ms,
			"duration_ms": self.duration_ms,
			"is_background": self.is_background,
			"romanized_text": self.romanized_text,
		}

	@classmethod
	def from_dict(cls, data):
		return cls(
			text=data.get("text", ""),
			start_offset_ms=float(data.get("start_offset_ms", 0)),
			duration_ms=float(data.get("duration_ms", 0)),
			is_background=bool(data.get("is_background", False)),
			romanized_text=data.get("romanized_text"),
		)


@dataclass(frozen=True)
class EmbeddedTranslation:
	text: str
	lang: str = ""


@dataclass(frozen=True)
class LyricLine:
	text: str
	start_ms: float
	end_ms: float
	syllables: tuple = ()
	translated_text: Optional[str] = None
	romanized_text: Optional[str] = None
	translation: Optional[EmbeddedTranslation] = None
	singer: Optional[str] = None

	@property
	def duration_ms(self):
		return self.end_ms - self.start_ms

	@property
	def has_romanization(self):
		return bool(self.romanized_text) or any(s.romanized_text for s in self.syllables)

	def to_dict(self):
		return {
			"text": self.text,
			"start_ms": self.start_ms,
			"end_ms": self.end_ms,
			"syllables": [s.to_dict() for s in self.syllables],
			"translated_text": self.translated_text,
			"romanized_text": self.romanized_text,
			"translation": (
				{"text": self.translation.text, "lang": self.translation.lang}
				if self.translation else None
			),
			"singer": self.singer,
		}

	@classmethod
	def from_dict(cls, data):
		translation = data.get("translation")
		return cls(
			text=data.get("text", ""),
			start_ms=float(data.get("start_ms", 0)),
			end_ms=float(data.get("end_ms", 0)),
			syllables=tuple(Syllable.from_dict(s) for s in data.get("syllables") or ()),
			translated_text=data.get("translated_text"),
			romanized_text=data.get("romanized_text"),
			translation=EmbeddedTranslation(translation.get("text", ""), translation.get("lang", "")) if translation else None,
			singer=data.get("singer"),
		)


@dataclass(frozen=True)
class LyricsDocument:
	kind: SyncKind
	lines: tuple
	metadata: dict = field(default_factory=dict, compare=False)

	@property
	def is_empty(self):
		return not self.lines or all(not line.text for line in self.lines)

	@property
	def is_word_synced(self):
		return self.kind is SyncKind.WORD

	def with_lines(self, lines):
		return replace(self, lines=tuple(lines))

	def to_dict(self):
		return {
			"kind": self.kind.value,
			"lines": [line.to_dict() for line in self.lines],
			"metadata": dict(self.metadata),
		}

	@classmethod
	def from_dict(cls, data):
		return cls(
			kind=SyncKind.parse(data.get("kind")),
			lines=tuple(LyricLine.from_dict(line) for line in data.get("lines") or ()),
			metadata=dict(data.get("metadata") or {}),
		)


def is_empty_lyrics(document):
	return document is None or document.is_empty


@dataclass(frozen=True)
class VersionedLyrics:
	document: LyricsDocument
	version: int

	def to_dict(self):
		return {"lyrics": self.document.to_dict(), "version": self.version}

	@classmethod
	def from_dict(cls, data):
		return cls(document=LyricsDocument.from_dict(data["lyrics"]), version=int(data["version"]))


@dataclass(frozen=True)
class TranslationRecord:
	document: LyricsDocument
	original_version: int

	def is_valid_for(self, version):
		return self.original_version == version

	def to_dict(self):
		return {"translated_lyrics": self.document.to_dict(), "original_version": self.original_version}

	@classmethod
	def from_dict(cls, data):
		return cls(
			document=LyricsDocument.from_dict(data["translated_lyrics"]),
			original_version=int(data["original_version"]),
		)


@dataclass(frozen=True)
class PersistentCacheEntry:
	key: str
	lyrics: LyricsDocument
	version: int
	stored_at_ms: int
	song_duration: float = 0

	def to_dict(self):
		return {
			"key": self.key,
			"lyrics": self.lyrics.to_dict(),
			"version": self.version,
			"timestamp": self.stored_at_ms,
			"duration": self.song_duration,
		}

	@classmethod
	def from_dict(cls, data):
		return cls(
			key=data["key"],
			lyrics=LyricsDocument.from_dict(data["lyrics"]),
			version=int(data["version"]),
			stored_at_ms=int(data["timestamp"]),
			song_duration=data.get("duration") or 0,
		)

	def is_fresh(self, now_ms, window_ms):
		return now_ms - self.stored_at_ms <= window_ms
