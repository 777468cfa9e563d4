"""
Error taxonomy for lyric resolution, translation and configuration
"""


class LyricsError(Exception):
	"""Base class for every lyricsync error"""


class NotFoundError(LyricsError):
	"""No provider returned usable lyrics"""

	def __init__(self, message="No lyrics found from any provider"):
		super().__init__(message)


class ProviderChainError(NotFoundError):
	"""Every provider in the chain failed; carries the individual failures"""

	def __init__(self, errors):
		self.errors = list(errors)
		names = ", ".join(name for name, _ in self.errors) or "none"
		super().__init__(f"All lyric providers failed ({names})")


class ProviderError(LyricsError):
	"""A single provider failed; recovered by moving down the chain"""

	def __init__(self, provider, message):
		self.provider = provider
		super().__init__(f"{provider}: {message}")


class InvalidResponseError(ProviderError):
	"""Malformed provider payload"""


class StaleCacheError(LyricsError):
	"""Cached translation belongs to an older lyrics version"""

	def __init__(self, key, cached_version, current_version):
		self.key = key
		self.cached_version = cached_version
		self.current_version = current_version
		super().__init__(
			f"Stale translation for {key}: cached v{cached_version}, current v{current_version}"
		)


class TranslationError(LyricsError):
	"""Translation or romanization failed"""


class ConfigError(LyricsError):
	"""Invalid configuration value"""


class ChannelError(LyricsError):
	"""Request channel misuse (closed channel, unknown message type)"""
