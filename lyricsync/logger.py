"""
Level-filtered file logging with size-bounded log files
"""

import os
import sys
import time
from datetime import datetime

import appdirs

LOG_LEVELS = {
	"FATAL": 5,
	"ERROR": 4,
	"WARN": 3,
	"INFO": 2,
	"DEBUG": 1,
	"TRACE": 0
}


class Logger:
	"""Handle application logging"""

	def __init__(self, log_dir=None, log_file="application.log", debug_log="debug.log",
				 log_level="FATAL", enable_debug=False, max_log_count=100, max_debug_count=100):
		self.log_dir = os.path.expanduser(log_dir or appdirs.user_log_dir("lyricsync"))
		self.log_file = log_file
		self.debug_log = debug_log
		self.log_level = log_level.upper()
		self.enable_debug = enable_debug
		self.max_log_count = max_log_count
		self.max_debug_count = max_debug_count

	@classmethod
	def from_settings(cls, settings):
		"""Build a logger from a LogSettings section"""
		return cls(
			log_dir=settings.logs_dir,
			log_file=settings.log_file,
			debug_log=settings.debug_log,
			log_level=settings.log_level,
			enable_debug=settings.enable_debug,
			max_log_count=settings.max_log_count,
			max_debug_count=settings.max_debug_count,
		)

	def _trim(self, path, keep):
		"""Keep only the last `keep` lines of a log file"""
		if not os.path.exists(path):
			return
		try:
			with open(path, "r+", encoding="utf-8") as f:
				lines = f.readlines()
				if len(lines) > keep:
					f.seek(0)
					f.truncate()
					f.writelines(lines[-keep:])
		except OSError as e:
			print(f"Log cleanup failed: {e}", file=sys.stderr)

	def enabled_for(self, level: str) -> bool:
		message_level = LOG_LEVELS.get(level.upper(), 2)
		if self.enable_debug and message_level <= LOG_LEVELS["DEBUG"]:
			return True
		return message_level >= LOG_LEVELS.get(self.log_level, 2)

	def log_message(self, level: str, message: str):
		"""Unified logging function with level-based filtering and rotation"""
		level = level.upper()
		if not self.enabled_for(level):
			return

		message_level = LOG_LEVELS.get(level, 2)
		configured_level = LOG_LEVELS.get(self.log_level, 2)
		timestamp = f"{datetime.now().strftime('%Y-%m-%d %H:%M:%S')}.{int(time.time() * 1000000) % 1000000:06d}"
		entry = f"{timestamp} | {level} | {message}\n"

		try:
			os.makedirs(self.log_dir, exist_ok=True)

			if self.enable_debug and message_level <= LOG_LEVELS["DEBUG"]:
				debug_path = os.path.join(self.log_dir, self.debug_log)
				with open(debug_path, "a", encoding="utf-8") as f:
					f.write(entry)
				self._trim(debug_path, self.max_debug_count)

			if message_level >= configured_level:
				main_path = os.path.join(self.log_dir, self.log_file)
				with open(main_path, "a", encoding="utf-8") as f:
					f.write(entry)
				if os.path.getsize(main_path) > self.max_log_count * 1024:
					self._trim(main_path, self.max_log_count)
		except OSError as e:
			sys.stderr.write(f"Logging failed: {e}\n")

	# Specific level helpers
	def log_fatal(self, message: str):
		self.log_message("FATAL", message)

	def log_error(self, message: str):
		self.log_message("ERROR", message)

	def log_warn(self, message: str):
		self.log_message("WARN", message)

	def log_info(self, message: str):
		self.log_message("INFO", message)

	def log_debug(self, message: str):
		self.log_message("DEBUG", message)

	def log_trace(self, message: str):
		self.log_message("TRACE", message)


LOGGER = Logger()
