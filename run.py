#!/usr/bin/env python3
"""
Terminal shell for the AI Content Detector.
Analyzes a text passage or an image once, or runs an interactive session.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import shlex
import sys
from pathlib import Path

from analysis_orchestrator import AnalysisOrchestrator
from detection_service import (
    DemoDetectionService,
    DetectionService,
    HttpDetectionService,
    sniff_image_type,
    validate_environment,
)
from mode_state import Mode, ModeState, Result, SelectedImage
from status_projection import UPLOAD_HINT, ViewKind, analyze_button, project_status, render_text

MAX_IMAGE_BYTES = 4 * 1024 * 1024

HELP_TEXT = """Commands:
  mode text|image   switch analysis mode (clears input and result)
  text <content>    set the text to analyze
  image <path>      select an image to analyze
  analyze           run the analysis
  status            show the current mode, input and status
  help              show this message
  quit              exit"""


def check_environment() -> bool:
    """Check that the detection endpoints are configured."""
    try:
        validate_environment()
    except RuntimeError as e:
        print(f"❌ {e}")
        return False
    print("✅ Detection endpoints configured")
    return True


def load_image(path: str | Path) -> SelectedImage:
    """Read an upload and enforce the size and type limits. Raises ValueError."""
    path = Path(path)
    if not path.is_file():
        raise ValueError(f"File not found: {path}")

    size = path.stat().st_size
    if size > MAX_IMAGE_BYTES:
        raise ValueError(f"Image too large ({size:,} bytes). Accepted: {UPLOAD_HINT}")

    data = path.read_bytes()
    mime = sniff_image_type(data)
    if mime is None:
        raise ValueError(f"Unsupported image file: {path.name}. Accepted: {UPLOAD_HINT}")
    return SelectedImage(filename=path.name, data=data, mime_type=mime)


def build_service(demo: bool) -> DetectionService:
    if demo:
        return DemoDetectionService()
    return HttpDetectionService.from_env()


def describe(state: ModeState) -> str:
    lines = [f"Mode: {state.mode.value}"]
    if state.mode is Mode.TEXT:
        text = getattr(state.working_input, "text", "")
        lines.append(f"Text: {len(text)} characters")
    else:
        image = getattr(state.working_input, "image", None)
        lines.append(f"Image: {image.filename if image else '(none)'}")
        if state.preview is not None:
            lines.append(f"Preview: {state.preview.path}")
    button = analyze_button(state.mode, state.status)
    lines.append(f"[{button.label}]" + ("" if button.enabled else " (disabled)"))
    rendered = render_text(project_status(state.status))
    if rendered:
        lines.append(rendered)
    return "\n".join(lines)


def print_status(state: ModeState) -> None:
    view = project_status(state.status)
    if view.kind is not ViewKind.NOTHING:
        print(render_text(view))


async def analyze_once(service: DetectionService, text: str | None, image_path: str | None) -> bool:
    """Analyze a single input. Returns True when a verdict was produced."""
    state = ModeState(Mode.IMAGE if image_path else Mode.TEXT)
    orchestrator = AnalysisOrchestrator(state, service)
    state.subscribe(print_status)
    try:
        if image_path:
            try:
                state.select_file(load_image(image_path))
            except ValueError as e:
                print(f"❌ {e}")
                return False
        else:
            state.update_text(text or "")
        await orchestrator.analyze()
        return isinstance(state.status, Result)
    finally:
        orchestrator.dispose()
        await service.aclose()


async def handle_command(orchestrator: AnalysisOrchestrator, line: str) -> bool:
    """Apply one interactive command. Returns False when the session should end."""
    state = orchestrator.state
    command, _, rest = line.strip().partition(" ")
    command = command.lower()

    if not command:
        return True
    if command in {"quit", "exit"}:
        return False
    if command == "help":
        print(HELP_TEXT)
    elif command == "mode":
        try:
            state.set_mode(Mode(rest.strip().lower()))
        except ValueError:
            print("❌ Mode must be 'text' or 'image'")
    elif command == "text":
        state.update_text(rest)
    elif command == "image":
        parts = shlex.split(rest) if rest.strip() else []
        if not parts:
            print("❌ Usage: image <path>")
        else:
            try:
                state.select_file(load_image(parts[0]))
            except ValueError as e:
                print(f"❌ {e}")
    elif command == "analyze":
        await orchestrator.analyze()
    elif command == "status":
        print(describe(state))
    else:
        print(f"Unknown command: {command}. Type 'help' for the list of commands.")
    return True


async def interactive_session(service: DetectionService) -> None:
    state = ModeState()
    orchestrator = AnalysisOrchestrator(state, service)
    state.subscribe(print_status)
    print(HELP_TEXT)
    try:
        while True:
            try:
                line = await asyncio.to_thread(input, f"[{state.mode.value}]> ")
            except EOFError:
                break
            if not await handle_command(orchestrator, line):
                break
    finally:
        orchestrator.dispose()
        await service.aclose()


def main():
    """Main function to handle command line arguments."""
    parser = argparse.ArgumentParser(
        description='AI Content Detector',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run.py                          # Interactive session
  python run.py --text "Some passage"    # Analyze a text once
  python run.py --image photo.png        # Analyze an image once
  python run.py --demo                   # Use the offline demo detector
  python run.py --check                  # Check configuration only
        """
    )

    group = parser.add_mutually_exclusive_group()
    group.add_argument('--text', help='Text to analyze')
    group.add_argument('--image', help='Path of the image to analyze (PNG, JPG, WEBP, max 4MB)')
    parser.add_argument('--demo', action='store_true',
                        help='Use the offline demo detector instead of the remote service')
    parser.add_argument('--check', action='store_true',
                        help='Check configuration only')
    parser.add_argument('--verbose', action='store_true',
                        help='Enable debug logging')

    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    print("🤖 AI Content Detector")
    print("=" * 40)

    if args.check:
        sys.exit(0 if check_environment() else 1)

    try:
        service = build_service(args.demo)
    except RuntimeError as e:
        print(f"❌ {e}")
        print("   Set the variables above or run with --demo")
        sys.exit(1)

    try:
        if args.text is not None or args.image is not None:
            ok = asyncio.run(analyze_once(service, args.text, args.image))
            sys.exit(0 if ok else 1)
        asyncio.run(interactive_session(service))
    except KeyboardInterrupt:
        print("\n👋 Stopped by user")


if __name__ == '__main__':
    main()
