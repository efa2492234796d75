import argparse
import logging
import sys
from pathlib import Path

from xm_decryptor.batch import collect_files, process_batch
from xm_decryptor.configs import settings
from xm_decryptor.schemas import PipelineOptions


def build_parser() -> argparse.ArgumentParser:
    arg_parser = argparse.ArgumentParser(description="Decrypts Ximalaya .xm files into playable audio.")
    arg_parser.add_argument("path", type=Path, help="Path to an .xm file or a directory of .xm files")
    arg_parser.add_argument(
        "-n", "--dry-run", action="store_true", help="Decrypt and validate without writing any output"
    )
    arg_parser.add_argument(
        "-o", "--output-dir", type=Path, help="Directory for decrypted files (default: next to input)"
    )
    arg_parser.add_argument("-j", "--jobs", type=int, default=settings.max_workers, help="Files decrypted in parallel")
    arg_parser.add_argument(
        "--extension", default=settings.input_extension, help="Extension of input files in a directory"
    )
    arg_parser.add_argument(
        "--keep-cipher-frames",
        action="store_true",
        help="Keep the TSIZ/TSRC/TENC/TSSE frames in the rewritten tag block",
    )
    arg_parser.add_argument("--no-tags", action="store_true", help="Write the recovered audio without the tag block")
    arg_parser.add_argument(
        "--language-width", type=int, choices=(2, 3), help="Force the language code width of comment frames"
    )
    return arg_parser


def cli(argv=None) -> int:
    """
    Command line interface for decrypting .xm files.

    Returns:
        int: 0 when every file succeeded, 1 otherwise.
    """
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=settings.log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    try:
        files = collect_files(args.path, args.extension)
    except FileNotFoundError as e:
        logging.error(str(e))
        return 1
    if not files:
        logging.warning("No .%s files found in %s", args.extension.lstrip("."), args.path)
        return 0

    options = PipelineOptions(
        dry_run=args.dry_run,
        strip_cipher_frames=not args.keep_cipher_frames,
        embed_tags=not args.no_tags,
        language_width=args.language_width if args.language_width else settings.language_code_width,
    )
    report = process_batch(files, options, output_dir=args.output_dir, max_workers=args.jobs)
    for result in report.failed:
        print(f"error: {result.path}: {result.error}", file=sys.stderr)
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(cli())
