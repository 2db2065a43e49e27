#!/usr/bin/env python3

"""
__main__.py - Standalone entry point for NesCaster.  Opens a pygame window,
loads a ROM into the libretro core and runs a PlaySession.

Keys:
  F5  quick save        F9  quick load
  P   pause / resume    F1  cycle run-ahead frames
  ESC quit
"""

import argparse
import os
import sys

_src_dir = os.path.dirname(os.path.abspath(__file__))
if _src_dir not in sys.path:
    sys.path.insert(0, _src_dir)

from caster_logging import init_redirectors as _init_redirectors, restore_streams
_init_redirectors()

import pygame

from blob_store import BlobStore
from config import FPS, PROFILES_DIR, RUN_AHEAD_FRAMES_MAX, ensure_directories
from errors import FrameStateError
from libretro_core import LibretroCore, keyboard_input_state
from play_session import PlaySession, SessionContext
from save_stack import SaveAcknowledged, SaveStackManager, SaveWarning
from settings import load_settings, save_state_settings_for

SCALE = 3
NOTIFICATION_FRAMES = 120


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="NesCaster NES frontend")
    parser.add_argument("rom", help="Path to a .nes ROM")
    parser.add_argument("--profile", default="1", help="Profile id to save under")
    parser.add_argument("--core", default=None, help="Path to a libretro core")
    parser.add_argument(
        "--run-ahead", type=int, default=None, help="Run-ahead frames (overrides settings)"
    )
    return parser.parse_args(argv)


def run(argv=None):
    args = parse_args(argv)
    ensure_directories()

    settings = load_settings()
    state_settings = save_state_settings_for(settings, args.profile)
    if args.run_ahead is not None:
        state_settings.run_ahead_frames = min(max(args.run_ahead, 0), RUN_AHEAD_FRAMES_MAX)

    with open(args.rom, "rb") as f:
        content = f.read()

    pygame.init()

    core = LibretroCore(core_path=args.core)
    manager = SaveStackManager(
        BlobStore(PROFILES_DIR),
        history_size=state_settings.history_size,
        auto_history_size=state_settings.auto_history_size,
    )

    notification = {"text": "", "frames": 0}

    def on_save_event(event):
        if isinstance(event, (SaveAcknowledged, SaveWarning)):
            notification["text"] = event.message
            notification["frames"] = NOTIFICATION_FRAMES

    manager.add_listener(on_save_event)

    game_name = os.path.splitext(os.path.basename(args.rom))[0]
    session = PlaySession(core, manager, state_settings, SessionContext(args.profile))
    if not session.start(content, game_name, content_path=args.rom):
        manager.close()
        core.shutdown()
        pygame.quit()
        return 1

    screen = pygame.display.set_mode((core.WIDTH * SCALE, core.HEIGHT * SCALE))
    pygame.display.set_caption(f"NesCaster - {game_name}")
    clock = pygame.time.Clock()
    font = pygame.font.Font(None, 28)
    refresh = state_settings.refresh_hz or FPS

    running = True
    while running:
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                running = False
            elif event.type == pygame.KEYDOWN:
                try:
                    if event.key == pygame.K_ESCAPE:
                        running = False
                    elif event.key == pygame.K_F5:
                        session.quick_save()
                    elif event.key == pygame.K_F9:
                        session.quick_load()
                    elif event.key == pygame.K_p:
                        if session.paused:
                            session.resume()
                        else:
                            session.pause()
                    elif event.key == pygame.K_F1:
                        frames = (session.scheduler.frames + 1) % (RUN_AHEAD_FRAMES_MAX + 1)
                        session.set_run_ahead(frames)
                        notification["text"] = session.scheduler.stats().description.split("\n")[0]
                        notification["frames"] = NOTIFICATION_FRAMES
                except FrameStateError as e:
                    print(f"[Main] {e}")
                    notification["text"] = str(e)
                    notification["frames"] = NOTIFICATION_FRAMES

        frame = session.tick(keyboard_input_state(pygame.key.get_pressed()))
        video = frame.video if frame is not None else None
        screen.blit(core.get_surface(video, scale=SCALE), (0, 0))

        if session.paused:
            text = font.render("PAUSED - press P to resume", True, (255, 255, 0))
            screen.blit(text, text.get_rect(center=screen.get_rect().center))
        if notification["frames"] > 0:
            notification["frames"] -= 1
            text = font.render(notification["text"], True, (255, 255, 255))
            screen.blit(text, (8, 8))

        pygame.display.flip()
        clock.tick(refresh)

    session.stop()
    manager.close()
    core.shutdown()
    pygame.quit()
    return 0


if __name__ == '__main__':
    try:
        sys.exit(run())
    finally:
        restore_streams()
