import os

import pytest

from imgbatch_core.cancellation import CancellationSignal
from imgbatch_core.discovery import DiscoveryError, discover_image_files, is_image_file


@pytest.mark.parametrize(
    "name, expected",
    [
        ("a.png", True),
        ("b.JPG", True),
        ("c.jpeg", True),
        ("d.Bmp", True),
        ("e.gif", True),
        ("f.txt", False),
        ("png", False),
        ("g.png.bak", False),
        ("h.webp", False),
    ],
)
def test_is_image_file(name, expected):
    assert is_image_file(name) is expected


def _touch(path):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x")
    return path


def test_non_recursive_lists_only_top_level_images(tmp_path):
    _touch(tmp_path / "a.png")
    _touch(tmp_path / "b.jpg")
    _touch(tmp_path / "c.txt")
    _touch(tmp_path / "sub" / "d.png")

    found = set(discover_image_files(tmp_path, recurse=False))

    assert found == {tmp_path / "a.png", tmp_path / "b.jpg"}


def test_recursive_walk_yields_each_path_once(tmp_path):
    expected = set()
    for depth in range(4):
        directory = tmp_path.joinpath(*[f"d{i}" for i in range(depth)])
        for n in range(3):
            expected.add(_touch(directory / f"img{n}.PNG"))
    _touch(tmp_path / "d0" / "notes.md")

    found = list(discover_image_files(tmp_path, recurse=True))

    assert len(found) == len(set(found))
    assert set(found) == expected


def test_discovery_is_lazy(tmp_path):
    for n in range(5):
        _touch(tmp_path / f"{n}.gif")

    gen = discover_image_files(tmp_path, recurse=False)
    first = next(gen)

    assert first.suffix == ".gif"
    assert len(list(gen)) == 4


def test_excluded_directory_is_not_descended(tmp_path):
    _touch(tmp_path / "a.png")
    _touch(tmp_path / "out" / "a.png")

    found = set(discover_image_files(tmp_path, recurse=True, exclude=[tmp_path / "out"]))

    assert found == {tmp_path / "a.png"}


@pytest.mark.skipif(os.name == "nt", reason="symlinks need privileges on Windows")
def test_symlinked_directories_are_not_followed(tmp_path):
    _touch(tmp_path / "real" / "a.png")
    (tmp_path / "link").symlink_to(tmp_path / "real", target_is_directory=True)

    found = list(discover_image_files(tmp_path, recurse=True))

    assert found == [tmp_path / "real" / "a.png"]


def test_cancel_before_start_yields_nothing(tmp_path):
    _touch(tmp_path / "a.png")
    cancel = CancellationSignal()
    cancel.set()

    assert list(discover_image_files(tmp_path, recurse=True, cancel=cancel)) == []


def test_cancel_mid_stream_stops_yielding(tmp_path):
    for n in range(10):
        _touch(tmp_path / f"{n:02}.png")
    cancel = CancellationSignal()

    gen = discover_image_files(tmp_path, recurse=False, cancel=cancel)
    taken = [next(gen), next(gen)]
    cancel.set()

    assert len(taken) == 2
    assert list(gen) == []


def test_missing_root_raises_discovery_error(tmp_path):
    with pytest.raises(DiscoveryError):
        list(discover_image_files(tmp_path / "missing", recurse=False))


@pytest.mark.skipif(os.name == "nt" or (hasattr(os, "geteuid") and os.geteuid() == 0), reason="needs POSIX permissions as non-root")
def test_unreadable_subdirectory_raises_discovery_error(tmp_path):
    _touch(tmp_path / "a.png")
    locked = tmp_path / "locked"
    locked.mkdir()
    locked.chmod(0)
    try:
        with pytest.raises(DiscoveryError):
            list(discover_image_files(tmp_path, recurse=True))
    finally:
        locked.chmod(0o755)
