"""
Per-frame highlight diffing: which lines are active around the primary line,
and where each of their syllables is in the idle -> finished progression.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from wcwidth import wcswidth

from .logger import LOGGER


class SyllableState(str, Enum):
	IDLE = "idle"
	PRE_HIGHLIGHT = "pre-highlight"
	HIGHLIGHT = "highlight"
	FINISHED = "finished"


class TransitionKind(str, Enum):
	LINE_ENTER = "enter"
	LINE_EXIT = "exit"


@dataclass(frozen=True)
class Transition:
	kind: TransitionKind
	line_id: str


@dataclass(frozen=True)
class LeadIn:
	"""When, within the current syllable, the next one starts its pre-highlight"""
	delay_ms: float
	duration_ms: float


@dataclass(frozen=True)
class FontMetrics:
	font_size_px: float = 16
	cell_width_px: float = 8
	gradient_ratio: float = 0.375

	@classmethod
	def from_settings(cls, display):
		return cls(display.font_size_px, display.cell_width_px, display.gradient_ratio)


@dataclass(frozen=True)
class SyllableChange:
	line_id: str
	index: int
	state: SyllableState
	lead_in: Optional[LeadIn] = None


@dataclass
class HighlightFrame:
	active_line_ids: tuple = ()
	transitions: list = field(default_factory=list)
	syllable_changes: list = field(default_factory=list)
	focused_line_id: Optional[str] = None


class HighlightEngine:
	def __init__(self, metrics=None, lookahead_ms=190, logger=None):
		self.metrics = metrics or FontMetrics()
		self.lookahead_ms = lookahead_ms
		self.logger = logger or LOGGER
		self.active_line_ids = ()
		self.focused_line_id = None
		self._states = {}
		self._lead_in_cache = {}

	def reset(self):
		self.active_line_ids = ()
		self.focused_line_id = None
		self._states.clear()
		self._lead_in_cache.clear()

	def set_font_metrics(self, metrics):
		"""Lead-in timings depend on text width, so they are recomputed"""
		self.metrics = metrics
		self._lead_in_cache.clear()

	def state_of(self, line_id, index):
		states = self._states.get(line_id)
		if not states or index >= len(states):
			return SyllableState.IDLE
		return states[index]

	# ==============
	#  LEAD-IN TIMING
	# ==============
	def text_width(self, text):
		cells = wcswidth(text)
		if cells < 0:
			cells = len(text)
		return cells * self.metrics.cell_width_px

	def lead_in(self, line_id, syllable):
		key = (line_id, syllable.index)
		cached = self._lead_in_cache.get(key)
		if cached is not None:
			return cached

		width = self.text_width(syllable.text)
		duration = syllable.duration_ms
		if width <= 0.1 or duration <= 0:
			timing = LeadIn(0, 0)
		else:
			velocity = width / duration
			gradient = self.metrics.gradient_ratio * self.metrics.font_size_px / velocity
			timing = LeadIn(delay_ms=duration - gradient, duration_ms=gradient)
		self._lead_in_cache[key] = timing
		return timing

	# ==============
	#  FRAME UPDATE
	# ==============
	def _active_lines(self, model, current_ms, primary_index, visible_ids):
		last = len(model.lines) - 1
		start = max(0, primary_index - 1)
		end = min(last, primary_index + 2)
		active = [
			line for line in model.lines[start:end + 1]
			if line.id in visible_ids
			and line.start_ms - self.lookahead_ms <= current_ms < line.end_ms - self.lookahead_ms
		]
		active.sort(key=lambda line: line.start_ms)
		return active

	def update(self, model, current_ms, primary_index, visible_ids):
		frame = HighlightFrame()
		if model is None or not model.lines:
			return frame

		active = self._active_lines(model, current_ms, max(0, primary_index), visible_ids)
		new_ids = tuple(line.id for line in active)

		if set(new_ids) != set(self.active_line_ids):
			for old_id in self.active_line_ids:
				if old_id not in new_ids:
					frame.transitions.append(Transition(TransitionKind.LINE_EXIT, old_id))
					self._reset_line(old_id, frame)
			for new_id in new_ids:
				if new_id not in self.active_line_ids:
					frame.transitions.append(Transition(TransitionKind.LINE_ENTER, new_id))
		self.active_line_ids = new_ids
		frame.active_line_ids = new_ids

		self.focused_line_id = new_ids[-1] if new_ids else None
		frame.focused_line_id = self.focused_line_id

		for line in active:
			self._update_syllables(line, current_ms, frame)
		return frame

	def _set(self, line_id, states, index, state, frame, lead_in=None):
		states[index] = state
		frame.syllable_changes.append(SyllableChange(line_id, index, state, lead_in))

	def _reset_line(self, line_id, frame):
		states = self._states.pop(line_id, None)
		if not states:
			return
		for index, state in enumerate(states):
			if state is not SyllableState.IDLE:
				frame.syllable_changes.append(SyllableChange(line_id, index, SyllableState.IDLE))

	def _highlight(self, line, states, index, frame):
		self._set(line.id, states, index, SyllableState.HIGHLIGHT, frame)
		syllable = line.syllables[index]
		next_index = syllable.next_in_word
		if next_index is not None and states[next_index] is SyllableState.IDLE:
			self._set(line.id, states, next_index, SyllableState.PRE_HIGHLIGHT, frame,
					  self.lead_in(line.id, syllable))

	def _update_syllables(self, line, current_ms, frame):
		if not line.syllables:
			return
		states = self._states.setdefault(line.id, [SyllableState.IDLE] * len(line.syllables))

		for index, syllable in enumerate(line.syllables):
			state = states[index]
			if syllable.start_ms <= current_ms <= syllable.end_ms:
				if state is SyllableState.FINISHED:
					self._set(line.id, states, index, SyllableState.HIGHLIGHT, frame)
				elif state is not SyllableState.HIGHLIGHT:
					self._highlight(line, states, index, frame)
			elif current_ms > syllable.end_ms:
				if state is not SyllableState.FINISHED:
					if state is not SyllableState.HIGHLIGHT:
						self._highlight(line, states, index, frame)
					self._set(line.id, states, index, SyllableState.FINISHED, frame)
			elif state in (SyllableState.HIGHLIGHT, SyllableState.FINISHED):
				self._set(line.id, states, index, SyllableState.IDLE, frame)
			elif state is SyllableState.PRE_HIGHLIGHT:
				previous = states[index - 1] if index > 0 else SyllableState.IDLE
				# A finished syllable still counts as highlighted
				if previous not in (SyllableState.HIGHLIGHT, SyllableState.FINISHED):
					self._set(line.id, states, index, SyllableState.IDLE, frame)
