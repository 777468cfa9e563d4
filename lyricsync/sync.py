"""
Per-frame synchronizer tying the locator, highlight engine and scroll
synchronizer to a playback clock.
"""

from dataclasses import dataclass, field
from typing import Optional

from .config import SyncSettings
from .highlight import HighlightEngine
from .locator import ActiveWindowLocator
from .logger import LOGGER
from .scheduler import FrameLoop
from .scroll import ScrollSynchronizer


@dataclass
class SyncState:
	primary_index: int = -1
	active_line_ids: tuple = ()
	visible_line_ids: set = field(default_factory=set)
	scroll_animation: Optional[object] = None
	last_time_ms: Optional[float] = None
	focused_line_id: Optional[str] = None


@dataclass(frozen=True)
class SeekRequest:
	time_ms: float
	line_id: str


@dataclass(frozen=True)
class SyncFrame:
	time_ms: float
	primary_index: int = -1
	active_line_ids: tuple = ()
	transitions: tuple = ()
	syllable_changes: tuple = ()
	focused_line_id: Optional[str] = None
	scroll: Optional[object] = None
	seeked: bool = False

	@property
	def is_noop(self):
		return self.primary_index < 0 and not self.active_line_ids


class LyricsSynchronizer:
	def __init__(self, scheduler, layout, settings=None, metrics=None, on_seek=None, logger=None):
		self.scheduler = scheduler
		self.settings = settings or SyncSettings()
		self.on_seek = on_seek
		self.logger = logger or LOGGER

		self.locator = ActiveWindowLocator.from_settings(self.settings)
		self.highlight = HighlightEngine(metrics, self.settings.highlight_lookahead_ms, self.logger)
		self.scroll = ScrollSynchronizer(scheduler, layout, self.settings, logger=self.logger)
		self.state = SyncState()
		self.model = None

	def load(self, model):
		"""Swap in a new render model; every line starts visible"""
		self.model = model
		self.locator.reset(model.lines if model else ())
		self.highlight.reset()
		self.state = SyncState(visible_line_ids=set(model.line_ids) if model else set())
		self.scroll.reset()
		self.scroll.bind(model, self.state.visible_line_ids)
		self.logger.log_debug(f"Loaded render model v{model.version if model else None}")

	def set_visibility(self, line_id, visible):
		if visible:
			self.state.visible_line_ids.add(line_id)
		else:
			self.state.visible_line_ids.discard(line_id)

	def set_visible_lines(self, line_ids):
		self.state.visible_line_ids = set(line_ids)

	def tick(self, current_ms):
		"""Advance one frame; never raises"""
		try:
			return self._tick(current_ms)
		except Exception as e:
			self.logger.log_error(f"Sync frame failed at {current_ms}ms: {e}")
			return SyncFrame(time_ms=current_ms)

	def _tick(self, current_ms):
		model = self.model
		if model is None or not model.lines:
			return SyncFrame(time_ms=current_ms)

		state = self.state
		seeked = self.locator.is_seek(state.last_time_ms, current_ms)
		state.last_time_ms = current_ms

		hint = 0 if seeked else self.locator.last_index
		index = self.locator.locate(self.locator.predict(current_ms), hint)
		primary = index if index >= 0 else 0
		state.primary_index = primary

		highlight = self.highlight.update(model, current_ms, primary, state.visible_line_ids)
		state.active_line_ids = highlight.active_line_ids
		state.focused_line_id = highlight.focused_line_id

		animation = self.scroll.update(model, primary, state.visible_line_ids, force=seeked)
		if animation is not None:
			state.scroll_animation = animation

		return SyncFrame(
			time_ms=current_ms,
			primary_index=primary,
			active_line_ids=highlight.active_line_ids,
			transitions=tuple(highlight.transitions),
			syllable_changes=tuple(highlight.syllable_changes),
			focused_line_id=highlight.focused_line_id,
			scroll=animation,
			seeked=seeked,
		)

	def on_line_click(self, line_id):
		"""Emit a seek slightly before the clicked line and jump to it"""
		if self.model is None:
			return None
		line = self.model.line_by_id(line_id)
		if line is None:
			return None
		request = SeekRequest(max(0, line.start_ms - self.settings.seek_backoff_ms), line_id)
		if self.on_seek is not None:
			self.on_seek(request)
		animation = self.scroll.scroll_to(line.index, force=True)
		if animation is not None:
			self.state.scroll_animation = animation
		return request

	def on_user_interaction(self):
		self.scroll.on_user_interaction()

	def on_user_scroll(self):
		return self.scroll.on_user_scroll()

	def frame_loop(self, playback_clock, frame_rate=None):
		"""FrameLoop ticking this synchronizer with the playback clock's time"""
		return FrameLoop(
			self.scheduler,
			lambda: self.tick(playback_clock()),
			frame_rate or self.settings.frame_rate,
			self.logger,
		)

	def close(self):
		self.scroll.close()
