"""
Primary line selection for a predicted playback time
"""


class ActiveWindowLocator:
	def __init__(self, lines=(), lookahead_ms=300, sanity_tolerance_ms=10, overlap_grace_ms=50,
				 seek_threshold_ms=1000):
		self.lines = tuple(lines)
		self.lookahead_ms = lookahead_ms
		self.sanity_tolerance_ms = sanity_tolerance_ms
		self.overlap_grace_ms = overlap_grace_ms
		self.seek_threshold_ms = seek_threshold_ms
		self.last_index = -1

	@classmethod
	def from_settings(cls, settings, lines=()):
		return cls(
			lines,
			lookahead_ms=settings.scroll_lookahead_ms,
			sanity_tolerance_ms=settings.sanity_tolerance_ms,
			overlap_grace_ms=settings.overlap_grace_ms,
			seek_threshold_ms=settings.seek_threshold_ms,
		)

	def reset(self, lines=()):
		self.lines = tuple(lines)
		self.last_index = -1

	def predict(self, current_ms):
		return current_ms + self.lookahead_ms

	def is_seek(self, previous_ms, current_ms):
		"""A jump bigger than the seek threshold; the first sample counts as one"""
		if previous_ms is None:
			return True
		return abs(current_ms - previous_ms) > self.seek_threshold_ms

	def _contains(self, index, time_ms):
		line = self.lines[index]
		return line.start_ms <= time_ms < line.end_ms

	def _search(self, time_ms, hint):
		count = len(self.lines)
		if 0 <= hint < count:
			if self._contains(hint, time_ms):
				return hint
			if hint + 1 < count and self._contains(hint + 1, time_ms):
				return hint + 1

		low, high = 0, count - 1
		result = -1
		while low <= high:
			mid = (low + high) // 2
			line = self.lines[mid]
			if line.start_ms <= time_ms < line.end_ms:
				return mid
			if time_ms < line.start_ms:
				high = mid - 1
			else:
				low = mid + 1
				result = mid
		return result

	def locate(self, predicted_ms, hint=0):
		"""Index of the primary line for an already predicted time, or -1 before the first line"""
		count = len(self.lines)
		if count == 0:
			return -1

		index = self._search(predicted_ms, hint)
		if index == -1:
			self.last_index = 0
			return -1

		if predicted_ms > self.lines[index].end_ms + self.sanity_tolerance_ms:
			# Nothing located since the last reset: trust the caller's hint
			fallback = self.last_index if self.last_index >= 0 else hint
			index = min(max(fallback, 0), count - 1)
			self.last_index = index
			return index

		# Earliest of a run of overlapping lines wins
		while index > 0:
			previous = self.lines[index - 1]
			if previous.start_ms <= predicted_ms <= previous.end_ms + self.overlap_grace_ms:
				index -= 1
			else:
				break

		self.last_index = index
		return index
