"""
Flattening of versioned lyrics into the read-only render model consumed by
the synchronizer: absolute syllable times, line ids and word links.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional

from .models import SyncKind

# Retiming thresholds
RETIME_MIN_OVERLAP_MS = 100
RETIME_MAX_GAP_EXTENSION_MS = 1300


class DisplayMode(str, Enum):
	ORIGINAL = "original"
	TRANSLATED = "translated"
	ROMANIZED = "romanized"


@dataclass(frozen=True)
class RenderSyllable:
	index: int
	text: str
	start_ms: float
	end_ms: float
	duration_ms: float
	is_background: bool = False
	next_in_word: Optional[int] = None


@dataclass(frozen=True)
class RenderLine:
	id: str
	index: int
	text: str
	start_ms: float
	end_ms: float
	syllables: tuple = ()
	original_text: str = ""
	singer: Optional[str] = None

	@property
	def duration_ms(self):
		return self.end_ms - self.start_ms


@dataclass(frozen=True)
class RenderModel:
	version: int
	display_mode: DisplayMode
	lines: tuple
	kind: SyncKind = SyncKind.LINE
	_by_id: dict = field(default=None, init=False, repr=False, compare=False)

	def __post_init__(self):
		object.__setattr__(self, "_by_id", {line.id: line for line in self.lines})

	def __len__(self):
		return len(self.lines)

	def line_by_id(self, line_id):
		return self._by_id.get(line_id)

	@property
	def line_ids(self):
		return [line.id for line in self.lines]


def line_id(index):
	return f"line-{index}"


def _line_text(line, display_mode):
	if display_mode is DisplayMode.TRANSLATED:
		return line.translated_text or line.text
	if display_mode is DisplayMode.ROMANIZED:
		return line.romanized_text or line.text
	return line.text


def _build_syllables(line, display_mode):
	source = line.syllables
	syllables = []
	for j, syl in enumerate(source):
		next_in_word = None
		# Word boundaries come from the original text so romanized chunks keep them
		if syl.text and not syl.text[-1].isspace():
			for k in range(j + 1, len(source)):
				if source[k].is_background == syl.is_background:
					next_in_word = k
					break

		start = line.start_ms + syl.start_offset_ms
		text = syl.text
		if display_mode is DisplayMode.ROMANIZED and syl.romanized_text:
			text = syl.romanized_text
		syllables.append(RenderSyllable(
			index=j,
			text=text,
			start_ms=start,
			end_ms=start + syl.duration_ms,
			duration_ms=syl.duration_ms,
			is_background=syl.is_background,
			next_in_word=next_in_word,
		))
	return tuple(syllables)


def build_render_model(versioned, display_mode=DisplayMode.ORIGINAL, post_processors=()):
	"""Project a VersionedLyrics into a RenderModel, preserving line order"""
	display_mode = DisplayMode(display_mode)
	document = versioned.document
	lines = tuple(
		RenderLine(
			id=line_id(i),
			index=i,
			text=_line_text(line, display_mode),
			start_ms=line.start_ms,
			end_ms=line.end_ms,
			syllables=_build_syllables(line, display_mode),
			original_text=line.text,
			singer=line.singer,
		)
		for i, line in enumerate(document.lines)
	)
	for process in post_processors:
		lines = tuple(process(lines))
	return RenderModel(version=versioned.version, display_mode=display_mode, lines=lines, kind=document.kind)


def retime_lines(lines):
	"""Stretch line ends across overlaps and short gaps.

	First pass: when A overlaps B, B overlaps C and A does not overlap C, A
	ends where C starts. Second pass, from the end: a real overlap takes the
	next line's end, a gap extends the line by at most 1.3s.
	"""
	lines = list(lines)
	if len(lines) < 2:
		return tuple(lines)

	original_ends = [line.end_ms for line in lines]
	new_ends = list(original_ends)
	handled = [False] * len(lines)

	for i in range(len(lines) - 2):
		b, c = lines[i + 1], lines[i + 2]
		if b.start_ms < original_ends[i] and c.start_ms < original_ends[i + 1] and c.start_ms >= original_ends[i]:
			new_ends[i] = c.start_ms
			handled[i] = True

	for i in range(len(lines) - 2, -1, -1):
		if handled[i]:
			continue
		next_start = lines[i + 1].start_ms
		if next_start < original_ends[i]:
			overlap = original_ends[i] - next_start
			new_ends[i] = new_ends[i + 1] if overlap >= RETIME_MIN_OVERLAP_MS else original_ends[i]
		else:
			gap = next_start - original_ends[i]
			if gap > 0:
				new_ends[i] = original_ends[i] + min(RETIME_MAX_GAP_EXTENSION_MS, gap)

	return tuple(
		replace(line, end_ms=end) if end != line.end_ms else line
		for line, end in zip(lines, new_ends)
	)


class RenderModelBuilder:
	"""build_render_model with a fixed post-processor pipeline"""

	def __init__(self, post_processors=()):
		self.post_processors = tuple(post_processors)

	@classmethod
	def from_settings(cls, sync_settings):
		return cls([retime_lines] if sync_settings.retime else [])

	def build(self, versioned, display_mode=DisplayMode.ORIGINAL):
		return build_render_model(versioned, display_mode, self.post_processors)
