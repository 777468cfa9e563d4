"""
Parsers turning provider payloads (LRC, enhanced LRC, KPoe JSON, LRCLIB JSON,
YouTube json3 captions) into LyricsDocument.
"""

import re

from .errors import InvalidResponseError
from .models import EmbeddedTranslation, LyricLine, LyricsDocument, Syllable, SyncKind

# Lines of LRC with no next line to close them stay on screen this long
LAST_LINE_HOLD_MS = 5000

_LINE_TAG = re.compile(r'^\[(\d+:\d+(?:[.:]\d+)?)\](.*)')
_WORD_TAG = re.compile(r'<(\d+:\d+(?:[.:]\d+)?)>')
_FILLER_LINES = {"", "♪"}


def parse_time_to_seconds(time_str):
	"""Convert various timestamp formats to seconds with millisecond precision."""
	patterns = [
		r'^(?P<m>\d+):(?P<s>\d+\.\d+)$',  # MM:SS.ms
		r'^(?P<m>\d+):(?P<s>\d+):(?P<ms>\d{1,3})$',  # MM:SS:ms
		r'^(?P<m>\d+):(?P<s>\d+)$',  # MM:SS
		r'^(?P<s>\d+\.\d+)$',  # SS.ms
		r'^(?P<s>\d+)$'  # SS
	]

	for pattern in patterns:
		match = re.match(pattern, time_str)
		if match:
			parts = match.groupdict()
			minutes = int(parts.get('m', 0) or 0)
			seconds = float(parts.get('s', 0) or 0)
			milliseconds = int(parts.get('ms', 0) or 0) / 1000
			return round(minutes * 60 + seconds + milliseconds, 3)

	raise ValueError(f"Invalid time format: {time_str}")


def _to_ms(time_str):
	return round(parse_time_to_seconds(time_str) * 1000)


def _text_lines(content, source):
	if not isinstance(content, str):
		raise InvalidResponseError(source, f"expected LRC text, got {type(content).__name__}")
	return content.splitlines()


def _close_lines(timed):
	"""Give each (start_ms, text) pair the next start as its end"""
	lines = []
	for i, (start, text) in enumerate(timed):
		end = timed[i + 1][0] if i + 1 < len(timed) else start + LAST_LINE_HOLD_MS
		lines.append((start, end, text))
	return lines


def parse_lrc(content, metadata=None, source="lrc"):
	"""Parse line-synced LRC into a Line document; returns None without timestamps"""
	timed = []
	for raw_line in _text_lines(content, source):
		match = _LINE_TAG.match(raw_line.strip())
		if not match:
			continue
		try:
			start = _to_ms(match.group(1))
		except ValueError:
			continue
		timed.append((start, _WORD_TAG.sub("", match.group(2)).strip()))

	if not timed:
		return None

	timed.sort(key=lambda item: item[0])
	lines = tuple(
		LyricLine(text=text, start_ms=start, end_ms=end)
		for start, end, text in _close_lines(timed)
		if text not in _FILLER_LINES
	)
	return LyricsDocument(kind=SyncKind.LINE, lines=lines, metadata=dict(metadata or {}))


def parse_enhanced_lrc(content, metadata=None, source="lrc"):
	"""Parse A2 / enhanced LRC (<mm:ss.xx> word tags) into a Word document"""
	timed = []
	for raw_line in _text_lines(content, source):
		match = _LINE_TAG.match(raw_line.strip())
		if not match:
			continue
		try:
			start = _to_ms(match.group(1))
		except ValueError:
			continue
		timed.append((start, match.group(2)))

	if not timed:
		return None

	timed.sort(key=lambda item: item[0])
	has_words = False
	lines = []
	for start, end, body in _close_lines(timed):
		pieces = _WORD_TAG.split(body)
		# pieces: [lead, t1, text1, t2, text2, ...]
		syllables = []
		try:
			stamps = [_to_ms(t) for t in pieces[1::2]]
		except ValueError as e:
			raise InvalidResponseError(source, f"malformed word tag: {e}") from e
		texts = pieces[2::2]
		for i, (stamp, text) in enumerate(zip(stamps, texts)):
			if not text:
				continue
			word_end = stamps[i + 1] if i + 1 < len(stamps) else end
			syllables.append(Syllable(
				text=text,
				start_offset_ms=stamp - start,
				duration_ms=max(0, word_end - stamp),
			))
		text = "".join(pieces[0::2]).strip() if not syllables else "".join(s.text for s in syllables).strip()
		if text in _FILLER_LINES:
			continue
		has_words = has_words or bool(syllables)
		lines.append(LyricLine(text=text, start_ms=start, end_ms=end, syllables=tuple(syllables)))

	kind = SyncKind.WORD if has_words else SyncKind.LINE
	return LyricsDocument(kind=kind, lines=tuple(lines), metadata=dict(metadata or {}))


def parse_kpoe(data):
	"""Parse the KPoe / Lyrics+ JSON shape; returns None for empty payloads"""
	if not isinstance(data, dict):
		raise InvalidResponseError("kpoe", "payload is not an object")
	items = data.get("lyrics")
	if not isinstance(items, list) or not items:
		return None

	lines = []
	try:
		for item in items:
			start = float(item.get("time") or 0)
			duration = float(item.get("duration") or 0)

			syllables = [
				Syllable(
					text=syl.get("text") or "",
					start_offset_ms=float(syl.get("time") or 0) - start,
					duration_ms=float(syl.get("duration") or 0),
					is_background=bool(syl.get("isBackground", False)),
				)
				for syl in item.get("syllabus") or ()
			]

			romanized_text = None
			transliteration = item.get("transliteration") or {}
			roman_syllables = transliteration.get("syllabus") or []
			if roman_syllables and len(roman_syllables) == len(syllables):
				syllables = [
					Syllable(s.text, s.start_offset_ms, s.duration_ms, s.is_background,
							 roman_syllables[i].get("text") or s.text)
					for i, s in enumerate(syllables)
				]
				romanized_text = transliteration.get("text") or item.get("text")
			elif transliteration.get("text"):
				romanized_text = transliteration["text"]

			translation = item.get("translation")
			element = item.get("element") or {}
			lines.append(LyricLine(
				text=item.get("text") or "",
				start_ms=start,
				end_ms=start + duration,
				syllables=tuple(syllables),
				romanized_text=romanized_text,
				translation=(
					EmbeddedTranslation(translation.get("text") or "", translation.get("lang") or "")
					if isinstance(translation, dict) and translation.get("text") else None
				),
				singer=element.get("singer") if isinstance(element, dict) else None,
			))
	except (AttributeError, TypeError, ValueError) as e:
		raise InvalidResponseError("kpoe", f"malformed line: {e}") from e

	metadata = dict(data.get("metadata") or {})
	metadata["source"] = str(metadata.get("source", ""))
	if data.get("ignoreSponsorblock") or metadata.get("ignoreSponsorblock"):
		metadata["ignoreSponsorblock"] = True
	return LyricsDocument(kind=SyncKind.parse(data.get("type")), lines=tuple(lines), metadata=metadata)


def parse_lrclib(data):
	"""Parse an LRCLIB /api/get payload; plain-only and instrumental tracks give None"""
	if not isinstance(data, dict):
		raise InvalidResponseError("lrclib", "payload is not an object")
	if data.get("instrumental") or not data.get("syncedLyrics"):
		return None
	metadata = {
		"title": data.get("trackName"),
		"artist": data.get("artistName"),
		"album": data.get("albumName"),
		"duration": data.get("duration"),
		"source": "LRCLIB",
	}
	return parse_lrc(data["syncedLyrics"], metadata, source="lrclib")


def parse_youtube_captions(data, identity=None):
	"""Parse YouTube json3 caption events"""
	if not isinstance(data, dict):
		raise InvalidResponseError("youtube", "payload is not an object")
	lines = []
	try:
		for event in data.get("events") or ():
			text = " ".join(seg.get("utf8", "") for seg in event.get("segs") or ()).strip()
			if not text:
				continue
			start = float(event.get("tStartMs") or 0)
			duration = float(event.get("dDurationMs") or 0)
			lines.append(LyricLine(text=text, start_ms=start, end_ms=start + duration))
	except (AttributeError, TypeError, ValueError) as e:
		raise InvalidResponseError("youtube", f"malformed caption event: {e}") from e

	if not lines:
		return None
	metadata = identity.to_dict() if identity is not None else {}
	metadata["source"] = "YouTube Captions"
	return LyricsDocument(kind=SyncKind.LINE, lines=tuple(lines), metadata=metadata)
