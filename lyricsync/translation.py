"""
Translation and romanization of resolved lyrics, cached per
(song, action, target language) and invalidated by lyrics version.
"""

import asyncio
import json
import unicodedata
from dataclasses import replace
from enum import Enum

import aiohttp

from .cache import translation_key
from .errors import StaleCacheError, TranslationError
from .logger import LOGGER
from .models import TranslationRecord, is_empty_lyrics

GOOGLE_TRANSLATE_URL = "https://translate.googleapis.com/translate_a/single"
GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


class Action(str, Enum):
	TRANSLATE = "translate"
	ROMANIZE = "romanize"

	@classmethod
	def parse(cls, value):
		try:
			return cls(getattr(value, "value", value))
		except ValueError:
			raise TranslationError(f"Unknown action: {value!r}") from None


def primary_subtag(lang):
	return (lang or "").lower().split("-")[0].strip()


def is_purely_latin(text):
	"""True when every letter in the text is Latin script"""
	return all(not ch.isalpha() or unicodedata.name(ch, "").startswith("LATIN") for ch in text)


# ==============
#  PROVIDERS
# ==============
class TranslationProvider:
	name = "translator"

	async def translate(self, texts, target_language):
		"""Order and length preserving batch translation"""
		raise NotImplementedError

	async def romanize(self, items):
		"""[{original_line_index, text, chunk?}] -> same shape with romanized text"""
		raise NotImplementedError


class GoogleTranslateProvider(TranslationProvider):
	name = "google"

	def __init__(self, session=None, max_retries=3, retry_delay_ms=1000, url=GOOGLE_TRANSLATE_URL,
				 logger=None):
		self.session = session
		self.max_retries = max(1, max_retries)
		self.retry_delay_ms = retry_delay_ms
		self.url = url
		self.logger = logger or LOGGER

	async def _get_json(self, params):
		own_session = False
		session = self.session
		if session is None:
			session = aiohttp.ClientSession()
			own_session = True

		try:
			async with session.get(self.url, params=params, timeout=aiohttp.ClientTimeout(total=15)) as response:
				if response.status != 200:
					raise TranslationError(f"Google Translate error: HTTP {response.status}")
				try:
					return await response.json(content_type=None)
				except (aiohttp.ContentTypeError, json.JSONDecodeError):
					raise TranslationError("Google Translate returned invalid JSON") from None
		except (aiohttp.ClientError, asyncio.TimeoutError) as e:
			raise TranslationError(f"Google Translate network error: {e}") from e
		finally:
			if own_session:
				await session.close()

	async def _request(self, params):
		"""GET with exponential backoff between attempts"""
		last_error = None
		for attempt in range(self.max_retries):
			try:
				return await self._get_json(params)
			except TranslationError as e:
				last_error = e
				self.logger.log_warn(f"Google request failed (attempt {attempt + 1}/{self.max_retries}): {e}")
				if attempt + 1 < self.max_retries:
					await asyncio.sleep(self.retry_delay_ms * (2 ** attempt) / 1000)
		raise last_error

	async def _translate_one(self, text, target_language):
		if not text.strip():
			return ""
		data = await self._request([
			("client", "gtx"), ("sl", "auto"), ("tl", target_language), ("dt", "t"), ("q", text),
		])
		try:
			return "".join(segment[0] for segment in data[0] if segment and segment[0]) or text
		except (IndexError, TypeError):
			raise TranslationError("Unexpected Google Translate response") from None

	async def translate(self, texts, target_language):
		return list(await asyncio.gather(*(self._translate_one(t, target_language) for t in texts)))

	async def _detect_language(self, text):
		try:
			data = await self._get_json([("client", "gtx"), ("sl", "auto"), ("tl", "en"), ("dt", "t"), ("q", text)])
			return data[2] or "auto"
		except (TranslationError, IndexError, TypeError) as e:
			self.logger.log_debug(f"Language detection failed, using auto: {e}")
			return "auto"

	async def _romanize_one(self, text, source_language):
		if not text.strip() or is_purely_latin(text):
			return text
		data = await self._request([
			("client", "gtx"), ("sl", source_language), ("tl", "en"), ("hl", "en"), ("dt", "rm"), ("q", text),
		])
		try:
			romanized = data[0][0][3]
		except (IndexError, TypeError):
			romanized = None
		return romanized or text

	async def romanize(self, items):
		context = " ".join(item["text"] for item in items)
		if is_purely_latin(context):
			source_language = None
		else:
			source_language = await self._detect_language(context)

		output = []
		for item in items:
			result = {"original_line_index": item["original_line_index"], "text": item["text"]}
			if source_language is not None:
				result["text"] = await self._romanize_one(item["text"], source_language)
			if item.get("chunk"):
				chunks = []
				for chunk in item["chunk"]:
					text = chunk["text"]
					if source_language is not None:
						romanized = (await self._romanize_one(text, source_language)).strip()
						# Keep the trailing space that marks a word boundary
						text = romanized + text[len(text.rstrip()):]
					chunks.append({"text": text, "chunkIndex": chunk["chunkIndex"]})
				result["chunk"] = chunks
			output.append(result)
		return output


TRANSLATION_SCHEMA = {
	"type": "OBJECT",
	"properties": {
		"translated_lyrics": {
			"type": "ARRAY",
			"description": "Translated lyric lines, in the original order and count.",
			"items": {"type": "STRING"},
		},
		"target_language": {"type": "STRING"},
	},
	"required": ["translated_lyrics", "target_language"],
}


def romanization_schema(with_chunks):
	"""Response schema for structured romanization; chunks only when the input has any"""
	line = {
		"type": "OBJECT",
		"properties": {
			"text": {"type": "STRING", "description": "The fully romanized text of the line."},
			"original_line_index": {"type": "INTEGER", "description": "Index of the line in the input."},
		},
		"required": ["text", "original_line_index"],
	}
	if with_chunks:
		line["properties"]["chunk"] = {
			"type": "ARRAY",
			"nullable": True,
			"description": "Only present when the input line had chunks.",
			"items": {
				"type": "OBJECT",
				"properties": {
					"text": {"type": "STRING", "description": "One romanized chunk, never empty."},
					"chunkIndex": {"type": "INTEGER", "description": "Index of the chunk in the input line."},
				},
				"required": ["text", "chunkIndex"],
			},
		}
	return {
		"type": "OBJECT",
		"properties": {"romanized_lyrics": {"type": "ARRAY", "items": line}},
		"required": ["romanized_lyrics"],
	}


class GeminiProvider(TranslationProvider):
	"""Batch translation and structured romanization through the Gemini generateContent API"""

	name = "gemini"

	def __init__(self, api_key="", model="gemini-flash-lite-latest", session=None, url=GEMINI_URL, logger=None):
		self.api_key = api_key
		self.model = model
		self.session = session
		self.url = url
		self.logger = logger or LOGGER

	async def _generate(self, prompt, schema):
		if not self.api_key:
			raise TranslationError("Gemini API key is not configured")
		body = {
			"contents": [{"parts": [{"text": prompt}]}],
			"generationConfig": {
				"temperature": 0.0,
				"responseMimeType": "application/json",
				"responseSchema": schema,
			},
		}

		own_session = False
		session = self.session
		if session is None:
			session = aiohttp.ClientSession()
			own_session = True

		try:
			async with session.post(
				self.url.format(model=self.model),
				params={"key": self.api_key},
				json=body,
				timeout=aiohttp.ClientTimeout(total=60),
			) as response:
				try:
					data = await response.json(content_type=None)
				except (aiohttp.ContentTypeError, json.JSONDecodeError):
					data = None
				if response.status != 200:
					error = data.get("error") if isinstance(data, dict) else None
					message = error.get("message") if isinstance(error, dict) else response.reason
					raise TranslationError(f"Gemini API error: HTTP {response.status} - {message}")
		except (aiohttp.ClientError, asyncio.TimeoutError) as e:
			raise TranslationError(f"Gemini network error: {e}") from e
		finally:
			if own_session:
				await session.close()

		if not isinstance(data, dict):
			raise TranslationError("Gemini returned invalid JSON")
		blocked = (data.get("promptFeedback") or {}).get("blockReason")
		if blocked:
			raise TranslationError(f"Gemini request blocked: {blocked}")
		try:
			return json.loads(data["candidates"][0]["content"]["parts"][0]["text"])
		except (KeyError, IndexError, TypeError, ValueError) as e:
			raise TranslationError(f"Gemini response could not be parsed: {e}") from None

	async def translate(self, texts, target_language):
		if not texts:
			return []
		prompt = (
			f"Translate each of these song lyric lines into {target_language}. "
			"Keep the number and order of lines; never merge or split lines. "
			"Translate meaning naturally, keeping the tone of the song.\n\n"
			+ json.dumps(list(texts), ensure_ascii=False)
		)
		self.logger.log_debug(f"Gemini translating {len(texts)} lines to {target_language} with {self.model}")
		result = await self._generate(prompt, TRANSLATION_SCHEMA)

		lines = result.get("translated_lyrics") if isinstance(result, dict) else None
		if not isinstance(lines, list):
			raise TranslationError("Gemini response has no translated_lyrics array")
		if len(lines) != len(texts):
			raise TranslationError(f"Gemini returned {len(lines)} translations for {len(texts)} lines")
		return [str(line) for line in lines]

	async def romanize(self, items):
		if not items:
			return []
		prompt = (
			"Romanize these song lyric lines into Latin script. Keep every original_line_index, "
			"and for lines with chunks return one non-empty romanized chunk per input chunk with the same "
			"chunkIndex. Lines already in Latin script are returned unchanged.\n\n"
			+ json.dumps(items, ensure_ascii=False)
		)
		schema = romanization_schema(any(item.get("chunk") for item in items))
		self.logger.log_debug(f"Gemini romanizing {len(items)} lines with {self.model}")
		result = await self._generate(prompt, schema)

		lines = result.get("romanized_lyrics") if isinstance(result, dict) else None
		if not isinstance(lines, list) or len(lines) != len(items):
			raise TranslationError("Gemini returned malformed romanization")
		return lines


# ==============
#  RESOLVER
# ==============
class TranslationResolver:
	def __init__(self, store, settings, translators, lyrics_resolver=None, persistent=None, logger=None):
		self.store = store
		self.settings = settings
		self.translators = translators
		self.lyrics_resolver = lyrics_resolver
		self.persistent = persistent
		self.logger = logger or LOGGER

	def _translator(self, name):
		translator = self.translators.get(name)
		if translator is None:
			raise TranslationError(f"Unknown translation provider: {name}")
		return translator

	async def resolve(self, identity, action, target_language, force_reload=False):
		"""Resolve lyrics for the song, then translate or romanize them"""
		if self.lyrics_resolver is None:
			raise TranslationError("No lyrics resolver configured")
		versioned = await self.lyrics_resolver.resolve(identity, force_reload)
		return await self.resolve_document(identity, versioned, action, target_language, force_reload)

	async def resolve_document(self, identity, versioned, action, target_language, force_reload=False):
		"""Returns a TranslationRecord tagged with the source lyrics version"""
		action = Action.parse(action)
		if is_empty_lyrics(versioned.document):
			raise TranslationError("Original lyrics not found or empty")

		key = translation_key(identity, action, target_language)
		if not force_reload:
			cached = await self._get_cached(key, versioned.version)
			if cached is not None:
				return cached

		generation = self.store.generation
		target = self.settings.target_language_override or target_language
		if action is Action.TRANSLATE:
			document = await self._translate(versioned.document, target)
		else:
			document = await self._romanize(versioned.document)

		record = TranslationRecord(document, versioned.version)
		if self.store.generation != generation:
			self.logger.log_debug(f"Caches were reset during translation of {key}, not storing")
			return record
		self.store.set_translation(key, record)
		if self.persistent is not None:
			try:
				await self.persistent.set(key, record.to_dict())
			except Exception as e:
				self.logger.log_error(f"Failed to persist translation {key}: {e}")
		return record

	@staticmethod
	def _check_version(key, record, version):
		if not record.is_valid_for(version):
			raise StaleCacheError(key, record.original_version, version)
		return record

	async def _get_cached(self, key, version):
		record = self.store.get_translation(key)
		if record is not None:
			try:
				return self._check_version(key, record, version)
			except StaleCacheError as e:
				self.logger.log_debug(str(e))
				self.store.delete_translation(key)

		if self.persistent is None:
			return None
		value = await self.persistent.get(key)
		if value is None:
			return None
		try:
			record = self._check_version(key, TranslationRecord.from_dict(value), version)
		except StaleCacheError as e:
			self.logger.log_debug(str(e))
			await self.persistent.delete(key)
			return None
		except (KeyError, TypeError, ValueError) as e:
			self.logger.log_warn(f"Dropping corrupt translation entry {key}: {e}")
			await self.persistent.delete(key)
			return None

		self.store.set_translation(key, record)
		return record

	async def _translate(self, document, target_language):
		target_base = primary_subtag(target_language)
		final = [None] * len(document.lines)
		pending_texts = []
		pending_indices = []

		for i, line in enumerate(document.lines):
			embedded = line.translation
			if embedded and embedded.text and primary_subtag(embedded.lang) == target_base:
				final[i] = embedded.text
			else:
				pending_texts.append(line.text)
				pending_indices.append(i)

		if pending_texts:
			translator = self._translator(self.settings.translation_provider)
			self.logger.log_debug(f"Translating {len(pending_texts)} lines to {target_language} via {translator.name}")
			results = await translator.translate(pending_texts, target_language)
			if len(results) != len(pending_texts):
				raise TranslationError(
					f"{translator.name} returned {len(results)} translations for {len(pending_texts)} lines"
				)
			for index, text in zip(pending_indices, results):
				final[index] = text

		return document.with_lines(
			replace(line, translated_text=final[i] or line.text)
			for i, line in enumerate(document.lines)
		)

	async def _romanize(self, document):
		if any(line.has_romanization for line in document.lines):
			self.logger.log_debug("Using prebuilt romanization")
			return document

		items = []
		for i, line in enumerate(document.lines):
			item = {"original_line_index": i, "text": line.text}
			if line.syllables:
				item["chunk"] = [{"text": s.text, "chunkIndex": j} for j, s in enumerate(line.syllables)]
			items.append(item)

		translator = self._translator(self.settings.romanization_provider)
		output = await translator.romanize(items)
		if not isinstance(output, list) or len(output) != len(items):
			raise TranslationError(f"{translator.name} returned malformed romanization")

		by_index = {}
		for entry in output:
			try:
				by_index[int(entry["original_line_index"])] = entry
			except (KeyError, TypeError, ValueError):
				raise TranslationError(f"{translator.name} returned malformed romanization") from None

		lines = []
		for i, line in enumerate(document.lines):
			entry = by_index.get(i) or {}
			chunks = {c.get("chunkIndex"): c.get("text") for c in entry.get("chunk") or ()}
			syllables = tuple(
				replace(s, romanized_text=chunks.get(j) or s.text)
				for j, s in enumerate(line.syllables)
			)
			lines.append(replace(line, romanized_text=entry.get("text") or line.text, syllables=syllables))
		return document.with_lines(lines)
