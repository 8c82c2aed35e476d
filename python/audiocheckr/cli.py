"""Command-line interface for audiocheckr."""
import argparse
import logging
import sys
from pathlib import Path
from typing import List

from .decoder import DecodeError, load_wav
from .pipeline import DetectionPipeline
from .profiles import ProfileBuilder, available_profiles, get_profile
from .report import format_json, format_text, result_to_dict
from .spectrogram import render_spectrogram
from .types import DetectorType, Verdict

logger = logging.getLogger(__name__)


def collect_files(paths: List[str]) -> List[Path]:
    """Expand directories into the WAV files they contain, sorted."""
    files = []
    for p in paths:
        path = Path(p)
        if path.is_dir():
            files.extend(sorted(f for f in path.rglob("*") if f.suffix.lower() == ".wav" and f.is_file()))
        else:
            files.append(path)
    return files


def build_profile(args):
    profile = get_profile(args.profile)
    if args.min_confidence is None and not args.disable:
        return profile
    builder = ProfileBuilder.from_profile(profile)
    if args.min_confidence is not None:
        builder.min_confidence(args.min_confidence)
    for name in (args.disable or "").split(","):
        if name.strip():
            builder.disable_detector(DetectorType.parse(name))
    return builder.build()


def analyze_command(args):
    """Analyze audio files command."""
    try:
        profile = build_profile(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    files = collect_files(args.files)
    if not files:
        print("Error: No WAV files found", file=sys.stderr)
        sys.exit(2)

    pipeline = DetectionPipeline(profile=profile, max_workers=args.workers, quick=args.quick)
    reports = []
    all_good = True
    failed = False

    for path in files:
        if not path.exists():
            print(f"Error: File not found: {path}", file=sys.stderr)
            failed = True
            continue
        try:
            buffer = load_wav(path)
        except DecodeError as e:
            print(f"Error: {path}: {e}", file=sys.stderr)
            failed = True
            continue

        result = pipeline.analyze(buffer)
        if result.verdict.rank > Verdict.PROBABLY_LOSSLESS.rank:
            all_good = False

        if args.spectrogram:
            out = Path(args.spectrogram) / f"{path.stem}.png"
            render_spectrogram(buffer, out, mel=not args.linear)
            logger.info(f"Spectrogram saved to {out}")

        if args.json:
            reports.append(result_to_dict(result, str(path), include_suppressed=args.show_suppressed))
        else:
            print(format_text(result, str(path), show_suppressed=args.show_suppressed))

    if args.json:
        payload = reports[0] if len(reports) == 1 else reports
        text = format_json(payload)
        if args.json == "-":
            print(text)
        else:
            Path(args.json).write_text(text + "\n")
            print(f"Report saved to: {Path(args.json).resolve()}")

    if failed:
        sys.exit(2)
    sys.exit(0 if all_good else 1)


def profiles_command(args):
    """List built-in profiles command."""
    print("Available profiles:\n")
    for name in available_profiles():
        profile = get_profile(name)
        print(f"  {name:<12} {profile.description}")
    print()


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="audiocheckr",
        description="Detect fake lossless, upsampled and bit-padded audio"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Analyze command
    analyze_parser = subparsers.add_parser("analyze", help="Analyze WAV files")
    analyze_parser.add_argument("files", nargs="+", help="Files or directories to analyze")
    analyze_parser.add_argument("-p", "--profile", default="standard",
                                help=f"Detection profile ({', '.join(available_profiles())})")
    analyze_parser.add_argument("-j", "--json", metavar="PATH",
                                help="Write a JSON report to PATH ('-' for stdout)")
    analyze_parser.add_argument("--show-suppressed", action="store_true",
                                help="Include suppressed findings")
    analyze_parser.add_argument("-q", "--quick", action="store_true",
                                help="Skip the slower phase and ENF analyses")
    analyze_parser.add_argument("--min-confidence", type=float,
                                help="Override the profile's minimum confidence")
    analyze_parser.add_argument("--disable", help="Comma-separated detectors to disable")
    analyze_parser.add_argument("-w", "--workers", type=int, default=1,
                                help="Number of parallel threads for analysis (default: 1)")
    analyze_parser.add_argument("--spectrogram", metavar="DIR", help="Save spectrogram PNGs to DIR")
    analyze_parser.add_argument("--linear", action="store_true",
                                help="Linear frequency axis for spectrograms")
    analyze_parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    analyze_parser.set_defaults(func=analyze_command)

    # Profiles command
    profiles_parser = subparsers.add_parser("profiles", help="List detection profiles")
    profiles_parser.set_defaults(func=profiles_command)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(2)

    logging.basicConfig(
        level=logging.DEBUG if getattr(args, "verbose", False) else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    args.func(args)


if __name__ == "__main__":
    main()
