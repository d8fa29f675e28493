import os
import signal

import pytest
from PIL import Image

import imgbatch
from imgbatch import main, parse_args, selected_operation
from imgbatch_core import pipeline, state
from imgbatch_core.config import ConfigError
from imgbatch_core.discovery import DiscoveryError
from imgbatch_core.operations import OperationKind


@pytest.fixture
def quiet_config(tmp_path):
    """Config that keeps the CLI quiet and off the filesystem log."""
    path = tmp_path / "quiet.toml"
    path.write_text(
        "[logging]\nfile_enabled = false\nsilent = true\n",
        encoding="utf-8",
    )
    return path


def _loud_config(tmp_path):
    config = tmp_path / "loud.toml"
    config.write_text("[logging]\nfile_enabled = false\n", encoding="utf-8")
    return config


def _run(argv):
    with pytest.raises(SystemExit) as excinfo:
        main(argv)
    return excinfo.value.code


@pytest.mark.parametrize(
    "argv",
    [
        ["src", "--negate", "--remove"],
        ["src", "--scale", "0.5", "--copy", "out"],
        ["src", "--scale", "0"],
        ["src", "--scale", "-1"],
        ["src", "--scale", "abc"],
        ["src", "--negate", "--workers", "0"],
        ["src", "--negate", "--default-format", "tiff"],
    ],
)
def test_parse_args_rejects_invalid_flags(argv):
    with pytest.raises(SystemExit) as excinfo:
        parse_args(argv)
    assert excinfo.value.code == 2


def test_selected_operation_maps_flags():
    assert selected_operation(parse_args(["src", "--scale", "2"])) == (OperationKind.SCALE, 2.0, None)
    assert selected_operation(parse_args(["src", "--copy", "out"])) == (OperationKind.COPY, None, "out")
    assert selected_operation(parse_args(["src", "-r", "--remove"]))[0] is OperationKind.REMOVE

    with pytest.raises(ConfigError, match="Exactly one operation"):
        selected_operation(parse_args(["src"]))


def test_missing_operation_exits_with_error(tmp_path, quiet_config):
    assert _run([str(tmp_path), "--config", str(quiet_config)]) == 1
    assert state.stats.errors == 1


def test_missing_source_dir_exits_with_error(tmp_path, quiet_config):
    code = _run([str(tmp_path / "nope"), "--negate", "--config", str(quiet_config)])
    assert code == 1
    assert state.stats.processed == 0


def test_source_argument_required(quiet_config):
    assert _run(["--negate", "--config", str(quiet_config)]) == 1


def test_missing_explicit_config_exits_with_error(tmp_path):
    assert _run([str(tmp_path), "--negate", "--config", str(tmp_path / "missing.toml")]) == 1


def test_negate_run_succeeds(tmp_path, write_image, quiet_config):
    images = tmp_path / "images"
    path = write_image(images / "a.png")
    with Image.open(path) as img:
        before = img.tobytes()

    code = _run([str(images), "--negate", "--workers", "2", "--config", str(quiet_config)])

    assert code == 0
    with Image.open(path) as img:
        assert img.tobytes() == bytes(255 - v for v in before)
    assert state.stats.images_found == 1
    assert state.stats.successes == 1


def test_failed_files_do_not_change_exit_code(tmp_path, quiet_config):
    images = tmp_path / "images"
    images.mkdir()
    (images / "broken.jpg").write_bytes(b"not a jpeg")

    code = _run([str(images), "--scale", "0.5", "--config", str(quiet_config)])

    assert code == 0
    assert state.stats.errors == 1
    assert state.stats.processed == 1


def test_copy_run_creates_target(tmp_path, write_image, quiet_config):
    images = tmp_path / "images"
    src = write_image(images / "sub" / "a.gif", fmt="GIF")
    target = tmp_path / "copies"

    code = _run([str(images), "-r", "--copy", str(target), "--config", str(quiet_config)])

    assert code == 0
    assert (target / "a.gif").read_bytes() == src.read_bytes()


def test_discovery_error_exits_with_error(tmp_path, quiet_config, monkeypatch):
    def _broken(*args, **kwargs):
        raise DiscoveryError("Cannot read directory: boom")
        yield  # pragma: no cover

    monkeypatch.setattr("imgbatch_core.pipeline.discover_image_files", _broken)

    assert _run([str(tmp_path), "--remove", "--config", str(quiet_config)]) == 1
    assert ("discovery", "Cannot read directory: boom") in state.stats.failed_items


def test_generate_config_writes_file(tmp_path):
    path = tmp_path / "generated.toml"
    assert _run(["--generate-config", "--config", str(path), "-s"]) == 0
    assert "[pool]" in path.read_text(encoding="utf-8")


def test_summary_is_logged(tmp_path, write_image, capsys):
    config = _loud_config(tmp_path)
    images = tmp_path / "images"
    write_image(images / "a.png")

    assert _run([str(images), "--negate", "--config", str(config)]) == 0

    out = capsys.readouterr().out
    assert "Run completed." in out
    assert "Summary: images found=1, processed=1, success=1" in out


def test_cancel_mid_run_reports_processed_files_and_exits_zero(tmp_path, monkeypatch, capsys):
    images = tmp_path / "images"
    images.mkdir()
    for n in range(5):
        (images / f"{n}.png").write_bytes(b"x")
    real_process = pipeline._process

    def _process_then_cancel(result, task, operation, cancel):
        outcome = real_process(result, task, operation, cancel)
        cancel.set()
        return outcome

    monkeypatch.setattr(pipeline, "_process", _process_then_cancel)

    code = _run([
        str(images), "--remove", "--workers", "1", "--queue-size", "1",
        "--config", str(_loud_config(tmp_path)),
    ])

    assert code == 0
    out = capsys.readouterr().out
    assert "Operation cancelled. 1 files were processed" in out
    assert "Run completed." not in out
    assert len(list(images.iterdir())) == 4


@pytest.mark.skipif(not hasattr(signal, "SIGINT") or os.name == "nt", reason="POSIX signals required")
def test_sigint_cancels_run_and_exits_zero(tmp_path, write_image, monkeypatch, capsys):
    images = tmp_path / "images"
    path = write_image(images / "a.png")
    original = path.read_bytes()
    real_run_job = imgbatch.run_job

    def _interrupted_run_job(job, operation, cancel, **kwargs):
        os.kill(os.getpid(), signal.SIGINT)
        assert cancel.wait(timeout=2.0)
        return real_run_job(job, operation, cancel, **kwargs)

    monkeypatch.setattr(imgbatch, "run_job", _interrupted_run_job)

    code = _run([str(images), "--negate", "--config", str(_loud_config(tmp_path))])

    assert code == 0
    out = capsys.readouterr().out
    assert "Interrupt received" in out
    assert "Operation cancelled. 0 files were processed" in out
    assert path.read_bytes() == original
