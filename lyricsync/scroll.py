"""
Scroll positioning for the primary line: staggered, queued animations and
arbitration against the user scrolling by hand.
"""

from dataclasses import dataclass, field

from .config import SyncSettings
from .logger import LOGGER


class LineLayout:
	"""Line geometry supplied by the display"""

	padding_top = 0.0

	def offset_top(self, line_id):
		raise NotImplementedError


class FixedLineLayout(LineLayout):
	"""Every line the same height, stacked in render order"""

	def __init__(self, line_height=1.0, padding_top=0.0):
		self.line_height = line_height
		self.padding_top = padding_top

	def offset_top(self, line_id):
		return int(line_id.rsplit("-", 1)[1]) * self.line_height


@dataclass(frozen=True)
class ScrollAnimation:
	from_offset: float
	target_offset: float
	line_id: str
	forced: bool = False
	duration_ms: float = 0
	delays: dict = field(default_factory=dict, compare=False)


class ScrollSynchronizer:
	def __init__(self, scheduler, layout, settings=None, on_scroll=None, logger=None):
		self.scheduler = scheduler
		self.layout = layout
		self.settings = settings or SyncSettings()
		self.on_scroll = on_scroll
		self.logger = logger or LOGGER

		self.current_offset = 0.0
		self.primary_index = None
		self.animating = False
		self.pending = None
		self.user_control = False
		self.programmatic = False
		self.last_animation = None

		self._model = None
		self._visible = frozenset()
		self._animation_timer = None
		self._idle_timer = None
		self._programmatic_timer = None

	def bind(self, model, visible_ids):
		self._model = model
		self._visible = visible_ids

	def update(self, model, primary_index, visible_ids, force=False):
		"""Called every frame; scrolls when the primary line changed or on force"""
		self.bind(model, visible_ids)
		changed = primary_index != self.primary_index
		self.primary_index = primary_index
		if not (changed or force):
			return None
		if self.user_control and not force:
			return None
		return self.scroll_to(primary_index, force)

	def scroll_to(self, index, force=False):
		model = self._model
		if model is None or not 0 <= index < len(model.lines):
			return None
		line = model.lines[index]
		offset_top = self.layout.offset_top(line.id)
		if offset_top is None:
			return None

		target = self.layout.padding_top - offset_top
		if not force:
			if abs(target - self.current_offset) < 1:
				# Already in place, a queued scroll is stale
				self.pending = None
				return None
			if self.pending is not None and abs(target - self.pending[0]) < 1:
				return None

		self.user_control = False
		self._cancel("_idle_timer")
		self._begin_programmatic()
		return self._animate(target, index, force)

	def _begin_programmatic(self):
		self.programmatic = True
		self._cancel("_programmatic_timer")
		self._programmatic_timer = self.scheduler.call_later(
			self.settings.programmatic_scroll_ms, self._end_programmatic
		)

	def _end_programmatic(self):
		self.programmatic = False
		self._programmatic_timer = None

	# ==============
	#  ANIMATION
	# ==============
	def _stagger(self, reference_index):
		lines = self._model.lines
		start = max(0, reference_index - self.settings.stagger_look_behind)
		end = min(len(lines), reference_index + self.settings.stagger_look_ahead)
		delays = {}
		counter = 0
		for i in range(start, end):
			line = lines[i]
			if line.id not in self._visible:
				continue
			if i >= reference_index:
				delays[line.id] = counter * self.settings.stagger_delay_ms
				counter += 1
			else:
				delays[line.id] = 0
		return delays

	def _animate(self, target, reference_index, force):
		if self.animating and not force:
			self.pending = (target, reference_index)
			self.logger.log_trace(f"Scroll queued to {target}")
			return None

		previous = self.current_offset
		self.current_offset = target
		line_id = self._model.lines[reference_index].id
		delays = self._stagger(reference_index)

		if force:
			self._cancel("_animation_timer")
			self.animating = False
			self.pending = None
			animation = ScrollAnimation(previous, target, line_id, True, 0, {k: 0 for k in delays})
		else:
			duration = self.settings.scroll_duration_ms
			longest = max((duration + delay for delay in delays.values()), default=0)
			self.animating = True
			self._cancel("_animation_timer")
			self._animation_timer = self.scheduler.call_later(
				longest + self.settings.scroll_settle_ms, self._on_animation_done
			)
			animation = ScrollAnimation(previous, target, line_id, False, duration, delays)

		self.last_animation = animation
		if self.on_scroll is not None:
			self.on_scroll(animation)
		return animation

	def _on_animation_done(self):
		self.animating = False
		self._animation_timer = None
		if self.pending is None or self._model is None:
			return
		target, reference_index = self.pending
		self.pending = None
		if reference_index < len(self._model.lines):
			self._animate(target, reference_index, False)

	# ==============
	#  USER CONTROL
	# ==============
	def on_user_interaction(self):
		"""Wheel/touch input: hand control to the user until idle"""
		self.user_control = True
		self._cancel("_idle_timer")
		self._idle_timer = self.scheduler.call_later(self.settings.user_scroll_timeout_ms, self._on_idle)

	def on_user_scroll(self):
		"""Scroll event; ignored while a programmatic scroll is settling"""
		if self.programmatic:
			return False
		self.on_user_interaction()
		return True

	def _on_idle(self):
		self._idle_timer = None
		self.user_control = False
		self.logger.log_debug("User scroll idle, returning to auto-scroll")
		if self.primary_index is not None:
			self.scroll_to(self.primary_index, force=True)

	def _cancel(self, name):
		handle = getattr(self, name)
		if handle is not None:
			handle.cancel()
			setattr(self, name, None)

	def reset(self):
		"""Drop any running or queued animation, e.g. when a new model is loaded"""
		self._cancel("_animation_timer")
		self.animating = False
		self.pending = None
		self.primary_index = None

	def close(self):
		self.reset()
		for name in ("_idle_timer", "_programmatic_timer"):
			self._cancel(name)
