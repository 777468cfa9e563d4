"""
Command line entry point
"""

import argparse
import asyncio
import sys

import aiohttp

from . import __version__
from .config import ConfigManager
from .engine import Engine
from .errors import LyricsError
from .logger import Logger
from .models import SongIdentity, VersionedLyrics
from .render import DisplayMode, RenderModelBuilder
from .scheduler import AsyncioScheduler, FrameLoop
from .scroll import FixedLineLayout
from .sync import LyricsSynchronizer
from .translation import Action


def parse_args(argv=None):
	parser = argparse.ArgumentParser(description="lyricsync - synced lyrics resolver and follower")
	parser.add_argument("-c", "--config", help="Path to configuration file")
	parser.add_argument("-d", "--default", action="store_true", help="Use default settings without loading a config file")
	parser.add_argument("--version", action="version", version=__version__)

	song = argparse.ArgumentParser(add_help=False)
	song.add_argument("--title", required=True)
	song.add_argument("--artist", required=True)
	song.add_argument("--album", default="")
	song.add_argument("--duration", type=float, default=0, help="Song duration in seconds")
	song.add_argument("--force", action="store_true", help="Skip caches and refetch")

	commands = parser.add_subparsers(dest="command", required=True)
	commands.add_parser("fetch", parents=[song], help="Print synced lyrics")
	translate = commands.add_parser("translate", parents=[song], help="Print translated lyrics")
	translate.add_argument("--lang", default="en", help="Target language")
	commands.add_parser("romanize", parents=[song], help="Print romanized lyrics")
	follow = commands.add_parser("follow", parents=[song], help="Follow lyrics against the wall clock")
	follow.add_argument("--mode", choices=[m.value for m in DisplayMode], default=DisplayMode.ORIGINAL.value)
	follow.add_argument("--lang", default="en", help="Target language for translated mode")
	follow.add_argument("--start", type=float, default=0, help="Playback position to start from, in seconds")
	commands.add_parser("cache-size", help="Show cache usage")
	commands.add_parser("reset-cache", help="Clear memory and persistent caches")
	return parser.parse_args(argv)


def format_timestamp(ms):
	minutes, seconds = divmod(max(0, ms) / 1000, 60)
	return f"{int(minutes):02d}:{seconds:05.2f}"


def print_lines(document, attribute="text"):
	for line in document.lines:
		text = getattr(line, attribute) or line.text
		print(f"[{format_timestamp(line.start_ms)}] {text}")


def identity_from_args(args):
	return SongIdentity(args.title, args.artist, args.album, args.duration)


async def follow(engine, args):
	identity = identity_from_args(args)
	mode = DisplayMode(args.mode)
	versioned = await engine.lyrics.resolve(identity, args.force)
	if mode is DisplayMode.TRANSLATED:
		record = await engine.translations.resolve_document(identity, versioned, Action.TRANSLATE, args.lang)
		versioned = VersionedLyrics(record.document, versioned.version)
	elif mode is DisplayMode.ROMANIZED:
		record = await engine.translations.resolve_document(identity, versioned, Action.ROMANIZE, args.lang)
		versioned = VersionedLyrics(record.document, versioned.version)

	model = RenderModelBuilder.from_settings(engine.settings.sync).build(versioned, mode)
	scheduler = AsyncioScheduler()
	synchronizer = LyricsSynchronizer(scheduler, FixedLineLayout(), engine.settings.sync, logger=engine.logger)
	synchronizer.load(model)

	origin = scheduler.now_ms() - args.start * 1000
	end_ms = model.lines[-1].end_ms if model.lines else 0
	last_primary = None

	def playback_clock():
		return scheduler.now_ms() - origin

	def on_frame():
		nonlocal last_primary
		frame = synchronizer.tick(playback_clock())
		if frame.active_line_ids and frame.primary_index != last_primary:
			last_primary = frame.primary_index
			line = model.lines[frame.primary_index]
			print(f"[{format_timestamp(line.start_ms)}] {line.text}", flush=True)

	loop = FrameLoop(scheduler, on_frame, engine.settings.sync.frame_rate, engine.logger)
	loop.start()
	try:
		while playback_clock() < end_ms:
			await asyncio.sleep(0.25)
	finally:
		loop.stop()
		synchronizer.close()


async def run(args, settings, logger):
	async with aiohttp.ClientSession() as session:
		engine = Engine(settings, session=session, logger=logger)
		if args.command == "fetch":
			versioned = await engine.lyrics.resolve(identity_from_args(args), args.force)
			print_lines(versioned.document)
		elif args.command in ("translate", "romanize"):
			action = Action.TRANSLATE if args.command == "translate" else Action.ROMANIZE
			record = await engine.translations.resolve(
				identity_from_args(args), action, getattr(args, "lang", "en"), args.force
			)
			print_lines(record.document, "translated_text" if action is Action.TRANSLATE else "romanized_text")
		elif args.command == "follow":
			await follow(engine, args)
		elif args.command == "cache-size":
			size = await engine.stores.size_bytes()
			print(f"{size / 1024:.1f} KiB")
		elif args.command == "reset-cache":
			engine.store.reset()
			await engine.stores.clear()
			print("Cache cleared")


def main(argv=None):
	args = parse_args(argv)
	try:
		config_manager = ConfigManager(config_path=args.config, use_default=args.default)
	except LyricsError as e:
		print(f"Configuration error: {e}", file=sys.stderr)
		return 2

	logger = Logger.from_settings(config_manager.settings.log)
	if config_manager.loaded_from:
		logger.log_info(f"Loaded config from {config_manager.loaded_from}")

	try:
		asyncio.run(run(args, config_manager.settings, logger))
	except LyricsError as e:
		logger.log_error(f"{args.command} failed: {e}")
		print(str(e), file=sys.stderr)
		return 1
	except KeyboardInterrupt:
		print("Exited by user (Ctrl+C).")
	return 0
