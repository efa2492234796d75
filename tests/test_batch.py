import pytest

from builders import build_xm
from xm_decryptor.batch import collect_files, process_batch, process_file
from xm_decryptor.main import cli
from xm_decryptor.pipeline import PipelineError
from xm_decryptor.schemas import PipelineOptions, Stage


@pytest.fixture
def library(tmp_path, m4a_audio):
    container, tag = build_xm(m4a_audio)
    (tmp_path / "good.xm").write_bytes(container)
    (tmp_path / "bad.xm").write_bytes(container[: len(tag) - 20])
    (tmp_path / "notes.txt").write_text("not a container")
    return tmp_path


def test_collect_files_from_directory(library):
    assert [p.name for p in collect_files(library)] == ["bad.xm", "good.xm"]
    assert [p.name for p in collect_files(library, ".txt")] == ["notes.txt"]


def test_collect_single_file(library):
    assert collect_files(library / "good.xm") == [library / "good.xm"]
    assert collect_files(library / "notes.txt") == []


def test_collect_missing_path(tmp_path):
    with pytest.raises(FileNotFoundError):
        collect_files(tmp_path / "missing")


def test_process_file_writes_next_to_input(library, m4a_audio):
    result = process_file(library / "good.xm", PipelineOptions(embed_tags=False))

    assert result.ok
    assert result.target == library / "good.m4a"
    assert result.target.read_bytes() == m4a_audio
    assert result.variant.language_width == 2


def test_failed_file_does_not_stop_the_batch(library):
    report = process_batch(collect_files(library), max_workers=2)

    assert not report.ok
    assert [r.path.name for r in report.succeeded] == ["good.xm"]
    assert [r.path.name for r in report.failed] == ["bad.xm"]
    error = report.failed[0].error
    assert isinstance(error, PipelineError)
    assert error.stage is Stage.TAGS
    assert (library / "good.m4a").exists()
    assert not (library / "bad.m4a").exists()


def test_output_dir(library, tmp_path_factory):
    output_dir = tmp_path_factory.mktemp("out") / "nested"

    report = process_batch([library / "good.xm"], output_dir=output_dir)

    assert report.ok
    assert (output_dir / "good.m4a").exists()
    assert not (library / "good.m4a").exists()


def test_dry_run_writes_nothing(library):
    report = process_batch([library / "good.xm"], PipelineOptions(dry_run=True))

    assert report.ok
    assert report.results[0].target == library / "good.m4a"
    assert not (library / "good.m4a").exists()


def test_empty_batch():
    report = process_batch([])

    assert report.ok
    assert report.results == []


def test_cli_exit_codes(library, m4a_audio):
    assert cli([str(library / "good.xm"), "--no-tags"]) == 0
    assert (library / "good.m4a").read_bytes() == m4a_audio
    assert cli([str(library), "--dry-run"]) == 1
    assert cli([str(library / "missing.xm")]) == 1


def test_cli_empty_directory(tmp_path):
    assert cli([str(tmp_path)]) == 0


def test_cli_output_dir(library, tmp_path_factory):
    output_dir = tmp_path_factory.mktemp("decrypted")

    assert cli([str(library / "good.xm"), "-o", str(output_dir), "-j", "1", "--keep-cipher-frames"]) == 0
    assert (output_dir / "good.m4a").exists()
