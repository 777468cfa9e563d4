"""
Configuration loading: nested JSON defaults, deep-merged user overrides and
environment-resolved values, exposed as typed settings sections.
"""

import copy
import json
import os
from dataclasses import dataclass, field
from enum import Enum

import appdirs

from .errors import ConfigError

APP_NAME = "lyricsync"
CONFIG_FILES = ["config.json"]

# ==============
#  DEFAULTS
# ==============
DEFAULT_CONFIG = {
	"global": {
		"logs_dir": appdirs.user_log_dir(APP_NAME),
		"log_file": "application.log",
		"log_level": {"env": "LYRICSYNC_LOG_LEVEL", "default": "FATAL"},
		"debug_log": "debug.log",
		"max_debug_count": 100,
		"max_log_count": 100,
		"enable_debug": {"env": "DEBUG", "default": "0"}
	},
	"redis": {
		"enabled": False,
		"host": {"env": "REDIS_HOST", "default": "localhost"},
		"port": {"env": "REDIS_PORT", "default": 6379},
		"db": 0,
		"prefix": "lyricsync"
	},
	"lyrics": {
		"preferred_provider": "kpoe",
		"provider_order": ["kpoe", "custom_kpoe", "lrclib", "local"],
		"excluded_providers": [],
		"custom_provider_url": "",
		"source_order": "apple,lyricsplus,musixmatch,spotify,musixmatch-word",
		"kpoe_servers": [
			"https://lyricsplus.prjktla.workers.dev",
			"https://lyrics-plus-backend.vercel.app"
		],
		"cache_strategy": "aggressive",
		"cache_dir": appdirs.user_cache_dir(APP_NAME),
		"search_timeout": 15,
		"ttml_bypass": False
	},
	"translation": {
		"translation_provider": "google",
		"romanization_provider": "google",
		"target_language_override": {"env": "LYRICSYNC_TARGET_LANG", "default": ""},
		"gemini_api_key": {"env": "GEMINI_API_KEY", "default": ""},
		"gemini_model": "gemini-flash-lite-latest",
		"max_retries": 3,
		"retry_delay_ms": 1000
	},
	"sync": {
		"scroll_lookahead_ms": 300,
		"highlight_lookahead_ms": 190,
		"seek_threshold_ms": 1000,
		"sanity_tolerance_ms": 10,
		"overlap_grace_ms": 50,
		"frame_rate": 60,
		"user_scroll_timeout_ms": 5000,
		"programmatic_scroll_ms": 250,
		"scroll_duration_ms": 400,
		"scroll_settle_ms": 50,
		"stagger_delay_ms": 30,
		"stagger_look_behind": 5,
		"stagger_look_ahead": 20,
		"seek_backoff_ms": 50,
		"retime": False
	},
	"display": {
		"font_size_px": 16,
		"cell_width_px": 8,
		"gradient_ratio": 0.375
	}
}


def deep_merge_dicts(base, updates):
	for key, value in updates.items():
		if key in base and isinstance(base[key], dict) and isinstance(value, dict):
			deep_merge_dicts(base[key], value)
		else:
			base[key] = value


def resolve_value(item):
	"""Resolve {"env": ..., "default": ...} into actual value"""
	if isinstance(item, dict) and "env" in item and "default" in item:
		return os.environ.get(item["env"], item["default"])
	return item


def resolve_tree(tree):
	"""Resolve every env-backed leaf of a config tree in place"""
	for key, value in tree.items():
		if isinstance(value, dict) and not ("env" in value and "default" in value):
			resolve_tree(value)
		else:
			tree[key] = resolve_value(value)
	return tree


# ==============
#  SETTINGS
# ==============
class CacheStrategy(str, Enum):
	NONE = "none"
	CONSERVATIVE = "conservative"
	AGGRESSIVE = "aggressive"

	@property
	def window_ms(self):
		return CACHE_EXPIRY_MS[self]

	@classmethod
	def parse(cls, value):
		try:
			return cls(str(value).lower())
		except ValueError:
			raise ConfigError(f"Unknown cache strategy: {value!r}") from None


CACHE_EXPIRY_MS = {
	CacheStrategy.NONE: 0,
	CacheStrategy.CONSERVATIVE: 24 * 60 * 60 * 1000,
	CacheStrategy.AGGRESSIVE: 7 * 24 * 60 * 60 * 1000,
}


@dataclass(frozen=True)
class LogSettings:
	logs_dir: str
	log_file: str = "application.log"
	log_level: str = "FATAL"
	debug_log: str = "debug.log"
	max_debug_count: int = 100
	max_log_count: int = 100
	enable_debug: bool = False


@dataclass(frozen=True)
class RedisSettings:
	enabled: bool = False
	host: str = "localhost"
	port: int = 6379
	db: int = 0
	prefix: str = APP_NAME


@dataclass(frozen=True)
class LyricsSettings:
	preferred_provider: str = "kpoe"
	provider_order: tuple = ("kpoe", "custom_kpoe", "lrclib", "local")
	excluded_providers: tuple = ()
	custom_provider_url: str = ""
	source_order: str = "apple,lyricsplus,musixmatch,spotify,musixmatch-word"
	kpoe_servers: tuple = ()
	cache_strategy: CacheStrategy = CacheStrategy.AGGRESSIVE
	cache_dir: str = ""
	search_timeout: float = 15
	ttml_bypass: bool = False


@dataclass(frozen=True)
class TranslationSettings:
	translation_provider: str = "google"
	romanization_provider: str = "google"
	target_language_override: str = ""
	gemini_api_key: str = ""
	gemini_model: str = "gemini-flash-lite-latest"
	max_retries: int = 3
	retry_delay_ms: int = 1000


@dataclass(frozen=True)
class SyncSettings:
	scroll_lookahead_ms: float = 300
	highlight_lookahead_ms: float = 190
	seek_threshold_ms: float = 1000
	sanity_tolerance_ms: float = 10
	overlap_grace_ms: float = 50
	frame_rate: float = 60
	user_scroll_timeout_ms: float = 5000
	programmatic_scroll_ms: float = 250
	scroll_duration_ms: float = 400
	scroll_settle_ms: float = 50
	stagger_delay_ms: float = 30
	stagger_look_behind: int = 5
	stagger_look_ahead: int = 20
	seek_backoff_ms: float = 50
	retime: bool = False


@dataclass(frozen=True)
class DisplaySettings:
	font_size_px: float = 16
	cell_width_px: float = 8
	gradient_ratio: float = 0.375


@dataclass(frozen=True)
class Settings:
	log: LogSettings = field(default_factory=lambda: LogSettings(logs_dir=appdirs.user_log_dir(APP_NAME)))
	redis: RedisSettings = field(default_factory=RedisSettings)
	lyrics: LyricsSettings = field(default_factory=LyricsSettings)
	translation: TranslationSettings = field(default_factory=TranslationSettings)
	sync: SyncSettings = field(default_factory=SyncSettings)
	display: DisplaySettings = field(default_factory=DisplaySettings)


def _as_bool(value):
	if isinstance(value, str):
		return value.strip().lower() in ("1", "true", "yes", "on")
	return bool(value)


def settings_from_dict(config):
	"""Build typed settings from a merged, env-resolved config tree"""
	g = config["global"]
	r = config["redis"]
	ly = config["lyrics"]
	tr = config["translation"]
	sy = config["sync"]
	di = config["display"]

	try:
		return Settings(
			log=LogSettings(
				logs_dir=os.path.expanduser(g["logs_dir"]),
				log_file=g["log_file"],
				log_level=str(g["log_level"]).upper(),
				debug_log=g["debug_log"],
				max_debug_count=int(g["max_debug_count"]),
				max_log_count=int(g["max_log_count"]),
				enable_debug=str(g["enable_debug"]) == "1" or g["enable_debug"] is True,
			),
			redis=RedisSettings(
				enabled=_as_bool(r["enabled"]),
				host=r["host"],
				port=int(r["port"]),
				db=int(r["db"]),
				prefix=r["prefix"],
			),
			lyrics=LyricsSettings(
				preferred_provider=ly["preferred_provider"],
				provider_order=tuple(ly["provider_order"]),
				excluded_providers=tuple(ly["excluded_providers"]),
				custom_provider_url=ly["custom_provider_url"] or "",
				source_order=ly["source_order"],
				kpoe_servers=tuple(ly["kpoe_servers"]),
				cache_strategy=CacheStrategy.parse(ly["cache_strategy"]),
				cache_dir=os.path.expanduser(ly["cache_dir"]),
				search_timeout=float(ly["search_timeout"]),
				ttml_bypass=_as_bool(ly["ttml_bypass"]),
			),
			translation=TranslationSettings(
				translation_provider=tr["translation_provider"],
				romanization_provider=tr["romanization_provider"],
				target_language_override=tr["target_language_override"] or "",
				gemini_api_key=tr["gemini_api_key"] or "",
				gemini_model=tr["gemini_model"],
				max_retries=int(tr["max_retries"]),
				retry_delay_ms=int(tr["retry_delay_ms"]),
			),
			sync=SyncSettings(**{k: (_as_bool(v) if k == "retime" else v) for k, v in sy.items()}),
			display=DisplaySettings(**di),
		)
	except (KeyError, TypeError, ValueError) as e:
		raise ConfigError(f"Invalid configuration: {e}") from e


class ConfigManager:
	def __init__(self, config_path=None, use_default=False, config_dir=None):
		self.user_config_dir = os.path.expanduser(config_dir or appdirs.user_config_dir(APP_NAME))
		self.config_path = config_path
		self.use_default = use_default
		self.loaded_from = None

		self.config = self.load_config()
		self.settings = settings_from_dict(self.config)

	def load_config(self):
		merged_config = copy.deepcopy(DEFAULT_CONFIG)

		if not self.use_default:
			config_paths = [self.config_path] if self.config_path else [os.path.join(self.user_config_dir, f) for f in CONFIG_FILES]
			for path in config_paths:
				path = os.path.expanduser(path)
				if not os.path.exists(path):
					continue
				try:
					with open(path, "r", encoding="utf-8") as f:
						file_config = json.load(f)
				except (OSError, json.JSONDecodeError) as e:
					raise ConfigError(f"Error loading config from {path}: {e}") from e
				deep_merge_dicts(merged_config, file_config)
				self.loaded_from = path
				break

		return resolve_tree(merged_config)
