from __future__ import annotations
import argparse
import json
import logging
import random
import sys
from typing import Optional, TextIO

from .analysis import describe_thresholds
from .audio.devices import SoundDeviceInput, SoundDeviceOutput, list_input_devices, list_output_devices
from .errors import AudioUnavailable, FinalizeFailed, ScreeningError, SettingsError
from .logging_setup import configure_logging
from .params import parse_launch_url, session_params
from .paths import path_settings
from .screening.listener import SessionListener
from .screening.session import ScreeningSession, format_duration, start_session
from .screening.staircase import Phase
from .settings import load_settings
from .version import __version__

logger = logging.getLogger('puretone.cli')

HELP = """Commands:
  p            play the tone (keeps sounding until s, h or n)
  s            stop the tone
  h            subject heard the tone
  n            subject did not hear the tone
  c            continue to the next ear/masking step
  j EAR MASK [HZ]  jump to a step, e.g. "j L masked" or "j R unmasked 1000"
  q            cancel the session
  ?            show this help"""


class ConsoleListener(SessionListener):
    def __init__(self, out: TextIO):
        self.out = out

    def _say(self, text):
        print(text, file=self.out, flush=True)

    def on_step_started(self, step):
        self._say(f"== {step.label()}")

    def on_frequency_started(self, step, frequency):
        self._say(f"-- {frequency} Hz")

    def on_level_changed(self, step, frequency, level_db):
        self._say(f"   level {level_db} dB HL")

    def on_threshold_captured(self, record):
        self._say(f"   threshold {record.frequency} Hz: {record.threshold_db} dB HL")

    def on_false_positive(self, count):
        self._say(f"   false positive detected (total {count}). Please listen carefully.")

    def on_transition_pending(self, next_step):
        self._say(f"Step complete. Next: {next_step.label()}. Type 'c' to continue.")

    def on_noise_changed(self, level, noisy):
        if noisy:
            self._say(f"!! Environment too noisy (level {level}). Wait for quiet before playing.")
        else:
            self._say(f"   environment quiet again (level {level})")

    def on_error(self, message):
        self._say(f"!! {message}")


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="puretone", description="Adaptive pure-tone hearing screening")
    parser.add_argument("url", nargs="?", help="screening://start?patient=...&mode=... launch URL")
    parser.add_argument("--patient", help="patient reference recorded with the result")
    parser.add_argument("--mode", help="screening (500-4000 Hz) or clinical (250-8000 Hz)")
    parser.add_argument("--settings", help="settings file (.json/.yaml)")
    parser.add_argument("--seed", type=int, help="seed for catch-trial randomisation")
    parser.add_argument("--output-device", help="output device index or name")
    parser.add_argument("--input-device", help="input device index or name")
    parser.add_argument("--list-devices", action="store_true", help="list audio devices and exit")
    parser.add_argument("--log-level", default="INFO", help="logging level (default INFO)")
    parser.add_argument("--log-file", help="log file path (default in the app data folder)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def _device_arg(value: Optional[str], fallback=None):
    """Device index or name from the command line, else the settings value."""
    if value is None:
        return fallback
    try:
        return int(value)
    except ValueError:
        return value


def _print_devices(out: TextIO) -> None:
    for title, devices in (("Output", list_output_devices()), ("Input", list_input_devices())):
        print(f"{title} devices:", file=out)
        if not devices:
            print("  (none)", file=out)
        for d in devices:
            mark = "*" if d["is_default"] else " "
            print(f" {mark}{d['index']:>3}  {d['name']}  [{d['host_api']}]", file=out)


def run_commands(session: ScreeningSession, lines, out: TextIO) -> bool:
    """Drive the session from command lines. True once the session completed."""
    for raw in lines:
        parts = raw.strip().split()
        if not parts:
            continue
        cmd, args = parts[0].lower(), parts[1:]
        try:
            if cmd == "p":
                session.press_tone()
                print(f"   playing {session.current_frequency} Hz at {session.current_level} dB HL", file=out)
            elif cmd == "s":
                session.release_tone()
            elif cmd == "h":
                session.heard()
            elif cmd == "n":
                session.not_heard()
            elif cmd == "c":
                session.acknowledge_transition()
            elif cmd == "j":
                if len(args) < 2:
                    print("usage: j EAR MASK [HZ]", file=out)
                    continue
                session.jump_to(args[0], args[1], int(args[2]) if len(args) > 2 else None)
            elif cmd == "q":
                session.cancel()
                return False
            else:
                print(HELP, file=out)
        except (ScreeningError, ValueError) as exc:
            print(f"!! {exc}", file=out)
        if session.phase is Phase.COMPLETE:
            return True
    return False


def main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    configure_logging(args.log_level.upper(), args.log_file)
    out = sys.stdout

    if args.list_devices:
        _print_devices(out)
        return 0

    try:
        settings = load_settings(args.settings or path_settings())
    except (SettingsError, OSError) as exc:
        logger.error("Cannot load settings: %s", exc)
        return 2

    values = parse_launch_url(args.url or "")
    if args.patient:
        values["patient"] = args.patient
    if args.mode:
        values["mode"] = args.mode
    try:
        identity_ref, mode = session_params(values)
    except ValueError as exc:
        logger.error("%s", exc)
        return 2

    rng = random.Random(args.seed) if args.seed is not None else None
    output = SoundDeviceOutput(_device_arg(args.output_device, settings.get('output_device')))
    microphone = SoundDeviceInput(_device_arg(args.input_device, settings.get('input_device')))

    try:
        session = start_session(identity_ref, mode, output=output, microphone=microphone, settings=settings,
                                rng=rng, listener=ConsoleListener(out))
    except AudioUnavailable as exc:
        logger.error("Audio output unavailable: %s", exc)
        return 1

    print(HELP, file=out)
    with session:
        if not run_commands(session, sys.stdin, out):
            print("Session cancelled; nothing recorded.", file=out)
            return 1
        try:
            result = session.finalize()
        except FinalizeFailed as exc:
            logger.error("%s", exc)
            return 1

    freqs = list(mode.frequencies)
    for row in describe_thresholds({'L': dict(result.left), 'R': dict(result.right)}, freqs):
        print(row, file=out)
    print(f"{result.classification_grade} | {result.pattern} | reliability {result.reliability_score}% | "
          f"{format_duration(result.duration_seconds)}", file=out)
    print(json.dumps(result.to_payload(), indent=2, ensure_ascii=False), file=out)
    return 0


if __name__ == "__main__":
    sys.exit(main())
