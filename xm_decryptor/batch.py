import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from xm_decryptor.configs import settings
from xm_decryptor.pipeline import PipelineError, process
from xm_decryptor.schemas import ContainerVariant, PipelineOptions

logger = logging.getLogger(__name__)


@dataclass
class FileResult:
    path: Path
    target: Optional[Path] = None
    variant: Optional[ContainerVariant] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchReport:
    results: list[FileResult] = field(default_factory=list)

    @property
    def succeeded(self) -> list[FileResult]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> list[FileResult]:
        return [r for r in self.results if not r.ok]

    @property
    def ok(self) -> bool:
        return not self.failed


def collect_files(path: Path, extension: Optional[str] = None) -> list[Path]:
    """
    List the containers to process.

    Args:
        path (Path): A single file, or a directory whose direct children are scanned.
        extension (Optional[str]): Extension to keep, without the dot. Defaults to ``settings.input_extension``.

    Returns:
        list[Path]: Matching files, sorted by name.
    """
    extension = (extension or settings.input_extension).lstrip(".").lower()
    if path.is_file():
        candidates = [path]
    elif path.is_dir():
        candidates = [entry for entry in path.iterdir() if entry.is_file()]
    else:
        raise FileNotFoundError(f"No such file or directory: {path}")
    return sorted(p for p in candidates if p.suffix.lstrip(".").lower() == extension)


def process_file(path: Path, options: PipelineOptions, output_dir: Optional[Path] = None) -> FileResult:
    """
    Decrypt a single file and write the result next to it, or into ``output_dir``.

    Failures are returned in the result rather than raised.
    """
    result = FileResult(path)
    try:
        artifact = process(path.read_bytes(), options)
        result.variant = artifact.variant
        result.target = (output_dir or path.parent) / artifact.file_name(path.stem)
        if artifact.materialized:
            result.target.parent.mkdir(parents=True, exist_ok=True)
            result.target.write_bytes(artifact.data)
            logger.info("Decrypted %s -> %s (%s)", path, result.target, artifact.variant)
        else:
            logger.info("Dry run: %s -> %s (%s)", path, result.target, artifact.variant)
    except PipelineError as e:
        logger.error("Failed to decrypt %s at the %s stage: %s", path, e.stage.value, e.cause)
        result.error = e
    except OSError as e:
        logger.error("I/O error on %s: %s", path, e)
        result.error = e
    return result


def process_batch(
    paths: Iterable[Path],
    options: Optional[PipelineOptions] = None,
    output_dir: Optional[Path] = None,
    max_workers: Optional[int] = None,
) -> BatchReport:
    """
    Decrypt files in parallel; a failed file never stops the rest of the batch.

    Args:
        paths (Iterable[Path]): Files to process.
        options (Optional[PipelineOptions]): Shared processing options.
        output_dir (Optional[Path]): Where to write outputs, defaults to each input's directory.
        max_workers (Optional[int]): Worker threads, defaults to ``settings.max_workers``.

    Returns:
        BatchReport: One result per input, in input order.
    """
    options = options or PipelineOptions()
    paths = list(paths)
    if not paths:
        return BatchReport()

    with ThreadPoolExecutor(max_workers=max_workers or settings.max_workers) as executor:
        results = list(executor.map(lambda p: process_file(p, options, output_dir), paths))

    report = BatchReport(results)
    logger.info("Processed %d files: %d succeeded, %d failed", len(results), len(report.succeeded), len(report.failed))
    return report
