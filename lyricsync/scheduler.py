"""
Timer scheduling used by the synchronizer. Components only see the
Scheduler interface so tests can drive time by hand.
"""

import asyncio
import time

from .logger import LOGGER


def wall_clock_ms():
	return int(time.time() * 1000)


class Scheduler:
	"""call_later/now_ms pair; handles returned by call_later expose cancel()"""

	def now_ms(self):
		raise NotImplementedError

	def call_later(self, delay_ms, callback, *args):
		raise NotImplementedError


class AsyncioScheduler(Scheduler):
	def __init__(self, loop=None):
		self._loop = loop

	@property
	def loop(self):
		if self._loop is None:
			self._loop = asyncio.get_running_loop()
		return self._loop

	def now_ms(self):
		return self.loop.time() * 1000

	def call_later(self, delay_ms, callback, *args):
		return self.loop.call_later(max(0, delay_ms) / 1000, callback, *args)


class FrameLoop:
	"""Periodic per-frame callback, started and stopped with page visibility"""

	def __init__(self, scheduler, callback, frame_rate=60, logger=None):
		self.scheduler = scheduler
		self.callback = callback
		self.interval_ms = 1000 / frame_rate
		self.logger = logger or LOGGER
		self._handle = None
		self._running = False
		self.frames = 0

	@property
	def running(self):
		return self._running

	def start(self):
		if self._running:
			return
		self._running = True
		self._schedule()

	def stop(self):
		self._running = False
		if self._handle is not None:
			self._handle.cancel()
			self._handle = None

	def set_page_visible(self, visible):
		if visible:
			self.start()
		else:
			self.stop()

	def _schedule(self):
		self._handle = self.scheduler.call_later(self.interval_ms, self._frame)

	def _frame(self):
		if not self._running:
			return
		self._schedule()
		self.frames += 1
		try:
			self.callback()
		except Exception as e:
			self.logger.log_error(f"Frame callback failed: {e}")
