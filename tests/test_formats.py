"""
Tests for the provider payload parsers.
"""

import pytest

from lyricsync.errors import InvalidResponseError
from lyricsync.formats import (
	LAST_LINE_HOLD_MS,
	parse_enhanced_lrc,
	parse_kpoe,
	parse_lrc,
	parse_lrclib,
	parse_time_to_seconds,
	parse_youtube_captions,
)
from lyricsync.models import EmbeddedTranslation, SongIdentity, SyncKind


class TestTimestamps:
	@pytest.mark.parametrize("value, expected", [
		("01:02.50", 62.5),
		("1:02:500", 62.5),
		("1:05", 65),
		("12.25", 12.25),
		("45", 45),
	])
	def test_supported_formats(self, value, expected):
		assert parse_time_to_seconds(value) == expected

	def test_invalid_format_raises(self):
		with pytest.raises(ValueError):
			parse_time_to_seconds("soon")


class TestLrc:
	def test_lines_close_at_next_start(self):
		document = parse_lrc("[ar:Eiffel 65]\n[00:01.00]I'm blue\n[00:04.50]Da ba dee\n")

		assert document.kind is SyncKind.LINE
		assert [(l.text, l.start_ms, l.end_ms) for l in document.lines] == [
			("I'm blue", 1000, 4500),
			("Da ba dee", 4500, 4500 + LAST_LINE_HOLD_MS),
		]

	def test_filler_lines_close_previous_but_are_dropped(self):
		document = parse_lrc("[00:01.00]One\n[00:03.00]♪\n[00:06.00]Two")

		assert [(l.text, l.end_ms) for l in document.lines] == [("One", 3000), ("Two", 11000)]

	def test_out_of_order_lines_are_sorted(self):
		document = parse_lrc("[00:05.00]Later\n[00:01.00]Sooner")

		assert [l.text for l in document.lines] == ["Sooner", "Later"]

	def test_untimed_text_gives_none(self):
		assert parse_lrc("just some words") is None

	def test_enhanced_lrc_builds_syllables(self):
		document = parse_enhanced_lrc("[00:01.00]<00:01.00>Hel<00:01.50>lo <00:02.00>world\n[00:04.00]Bye")

		first, second = document.lines
		assert document.kind is SyncKind.WORD
		assert first.text == "Hello world"
		assert [(s.text, s.start_offset_ms, s.duration_ms) for s in first.syllables] == [
			("Hel", 0, 500), ("lo ", 500, 500), ("world", 1000, 2000),
		]
		assert second.text == "Bye"
		assert second.syllables == ()

	def test_enhanced_lrc_without_word_tags_is_line_synced(self):
		assert parse_enhanced_lrc("[00:01.00]Plain").kind is SyncKind.LINE

	def test_non_text_content_is_invalid(self):
		with pytest.raises(InvalidResponseError) as info:
			parse_lrc(["[00:01.00]I'm blue"])

		assert info.value.provider == "lrc"

	def test_malformed_word_tag_is_invalid(self):
		with pytest.raises(InvalidResponseError):
			parse_enhanced_lrc("[00:01.00]<00:01:1234>Hel<00:01.50>lo")


class TestKPoe:
	@pytest.fixture
	def payload(self):
		return {
			"type": "Word",
			"metadata": {"source": "Apple"},
			"lyrics": [{
				"time": 1000,
				"duration": 2000,
				"text": "Hi there",
				"syllabus": [
					{"time": 1000, "duration": 500, "text": "Hi "},
					{"time": 1500, "duration": 1500, "text": "there", "isBackground": True},
				],
				"translation": {"text": "Salut", "lang": "fr"},
				"element": {"singer": "v1"},
			}],
		}

	def test_word_payload(self, payload):
		document = parse_kpoe(payload)

		line = document.lines[0]
		assert document.kind is SyncKind.WORD
		assert document.metadata["source"] == "Apple"
		assert (line.start_ms, line.end_ms) == (1000, 3000)
		assert [(s.text, s.start_offset_ms, s.is_background) for s in line.syllables] == [
			("Hi ", 0, False), ("there", 500, True),
		]
		assert line.translation == EmbeddedTranslation("Salut", "fr")
		assert line.singer == "v1"

	def test_prebuilt_syllable_romanization(self, payload):
		payload["lyrics"][0]["transliteration"] = {
			"text": "hai zea",
			"syllabus": [{"text": "hai "}, {"text": "zea"}],
		}

		line = parse_kpoe(payload).lines[0]

		assert line.romanized_text == "hai zea"
		assert [s.romanized_text for s in line.syllables] == ["hai ", "zea"]

	def test_line_level_romanization_when_syllables_differ(self, payload):
		payload["lyrics"][0]["transliteration"] = {"text": "hai zea", "syllabus": [{"text": "x"}]}

		line = parse_kpoe(payload).lines[0]

		assert line.romanized_text == "hai zea"
		assert [s.romanized_text for s in line.syllables] == [None, None]

	def test_empty_lyrics_give_none(self):
		assert parse_kpoe({"type": "Line", "lyrics": []}) is None

	def test_non_object_payload_is_invalid(self):
		with pytest.raises(InvalidResponseError):
			parse_kpoe(["not", "a", "dict"])

	def test_malformed_line_is_invalid(self, payload):
		payload["lyrics"][0]["time"] = "soon"

		with pytest.raises(InvalidResponseError):
			parse_kpoe(payload)


class TestLrclib:
	def test_synced_lyrics(self):
		document = parse_lrclib({
			"trackName": "Blue",
			"artistName": "Eiffel 65",
			"albumName": "Europop",
			"duration": 220,
			"syncedLyrics": "[00:01.00]I'm blue",
		})

		assert document.lines[0].text == "I'm blue"
		assert document.metadata["source"] == "LRCLIB"
		assert document.metadata["title"] == "Blue"

	def test_plain_and_instrumental_tracks_give_none(self):
		assert parse_lrclib({"plainLyrics": "I'm blue", "syncedLyrics": None}) is None
		assert parse_lrclib({"instrumental": True, "syncedLyrics": "[00:01.00]x"}) is None

	def test_non_text_synced_lyrics_are_invalid(self):
		with pytest.raises(InvalidResponseError) as info:
			parse_lrclib({"syncedLyrics": {"lines": []}})

		assert info.value.provider == "lrclib"


class TestYouTubeCaptions:
	def test_events_become_lines(self):
		data = {"events": [
			{"tStartMs": 500, "dDurationMs": 1500, "segs": [{"utf8": "I'm blue"}]},
			{"tStartMs": 2000, "dDurationMs": 100, "segs": [{"utf8": "\n"}]},
			{"tStartMs": 2500, "dDurationMs": 1000, "segs": [{"utf8": "da ba"}, {"utf8": "dee"}]},
		]}

		document = parse_youtube_captions(data, SongIdentity("Blue", "Eiffel 65"))

		assert [(l.text, l.start_ms, l.end_ms) for l in document.lines] == [
			("I'm blue", 500, 2000),
			("da ba dee", 2500, 3500),
		]
		assert document.metadata["source"] == "YouTube Captions"
		assert document.metadata["title"] == "Blue"

	def test_no_text_gives_none(self):
		assert parse_youtube_captions({"events": []}) is None

	def test_malformed_timestamp_is_invalid(self):
		data = {"events": [{"segs": [{"utf8": "hi"}], "tStartMs": "oops"}]}

		with pytest.raises(InvalidResponseError) as info:
			parse_youtube_captions(data)

		assert info.value.provider == "youtube"

	def test_malformed_segment_is_invalid(self):
		with pytest.raises(InvalidResponseError):
			parse_youtube_captions({"events": [{"segs": ["hi"], "tStartMs": 0}]})
