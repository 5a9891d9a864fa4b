import os
from dataclasses import dataclass
from pathlib import Path

import pytest

from dinghy.config import Configuration, TestData
from dinghy.core import Platform, Runnable
from dinghy.project import Metadata, Project, rec_copy, rec_copy_excl
from dinghy.testdata import try_test_file_path
from dinghy.utils import DinghyError


@dataclass
class _Platform(Platform):
    id: str
    triple: str

    def is_compatible_with(self, device):
        return False

    def is_host(self):
        return False

    def rustc_triple(self):
        return self.triple

    def strip(self, build):
        return None

    def sysroot(self):
        return None


def _project(tmp_path, test_data=()):
    conf = Configuration(test_data=list(test_data))
    metadata = Metadata(tmp_path / "ws", tmp_path / "ws" / "target")
    return Project(conf, metadata)


def _write(path, text="data"):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


def test_dirs(tmp_path):
    project = _project(tmp_path)
    platform = _Platform("arm", "armv7-unknown-linux-gnueabihf")
    assert project.project_dir() == tmp_path / "ws"
    assert project.target_dir("x") == tmp_path / "ws" / "target" / "x"
    triple = platform.rustc_triple()
    assert project.overlay_work_dir(platform) == tmp_path / "ws" / "target" / triple / triple


def test_link_test_data_round_trip(tmp_path, monkeypatch):
    monkeypatch.delenv("DINGHY", raising=False)
    base = tmp_path / "ws" / ".dinghy.toml"
    entry = TestData(id="data", base=base, source="fixtures", target="fixtures", copy_git_ignored=False)
    project = _project(tmp_path, [entry])
    exe = tmp_path / "target" / "debug" / "mytest"
    runnable = Runnable(id="mytest", exe=exe)

    test_data_path = project.link_test_data(runnable)

    assert test_data_path == tmp_path / "target" / "dinghy" / "mytest" / "test_data"
    assert (test_data_path / "test_data.cfg").is_file()
    assert try_test_file_path("data", exe) == base.parent / "fixtures"
    assert try_test_file_path("other", exe) is None


def test_link_test_data_rejects_nameless_exe(tmp_path):
    with pytest.raises(DinghyError):
        _project(tmp_path).link_test_data(Runnable(exe=Path("/")))


def test_copy_test_data(tmp_path):
    base = tmp_path / "conf" / "dinghy.toml"
    _write(tmp_path / "conf" / "tree" / "nested" / "f.txt", "nested")
    _write(tmp_path / "conf" / "single.txt", "single")
    entries = [
        TestData("tree", base, "tree", "tree", False),
        TestData("single", base, "single.txt", "single.txt", False),
        TestData("missing", base, "nothing", "nothing", False),
    ]
    app = tmp_path / "app"
    _project(tmp_path, entries).copy_test_data(app)

    assert (app / "test_data" / "tree" / "nested" / "f.txt").read_text() == "nested"
    assert (app / "test_data" / "single").read_text() == "single"
    assert not (app / "test_data" / "missing").exists()


def test_rec_copy_tree_skips_hidden(tmp_path):
    src = tmp_path / "src"
    _write(src / "a.txt", "a")
    _write(src / "sub" / "b.txt", "b")
    _write(src / ".hidden", "h")
    dst = tmp_path / "dst"
    rec_copy(src, dst, False)
    assert (dst / "a.txt").read_text() == "a"
    assert (dst / "sub" / "b.txt").read_text() == "b"
    assert not (dst / ".hidden").exists()


def test_rec_copy_honours_dinghyignore(tmp_path):
    src = tmp_path / "src"
    _write(src / ".dinghyignore", "skip/\n*.tmp\n")
    _write(src / "skip" / "x.txt")
    _write(src / "keep" / "y.tmp")
    _write(src / "keep" / "y.txt")
    dst = tmp_path / "dst"
    rec_copy(src, dst, True)
    assert not (dst / "skip").exists()
    assert not (dst / "keep" / "y.tmp").exists()
    assert (dst / "keep" / "y.txt").exists()


def test_rec_copy_gitignore_only_in_repository(tmp_path):
    src = tmp_path / "src"
    _write(src / ".gitignore", "*.log\n")
    _write(src / "a.txt")
    _write(src / "b.log")

    outside = tmp_path / "outside"
    rec_copy(src, outside, False)
    assert (outside / "b.log").exists()

    (src / ".git").mkdir()
    ignored = tmp_path / "ignored"
    rec_copy(src, ignored, False)
    assert (ignored / "a.txt").exists()
    assert not (ignored / "b.log").exists()

    kept = tmp_path / "kept"
    rec_copy(src, kept, True)
    assert (kept / "b.log").exists()


def test_rec_copy_gitignore_negation(tmp_path):
    src = tmp_path / "src"
    (src / ".git").mkdir(parents=True)
    _write(src / ".gitignore", "*.log\n!keep.log\n")
    _write(src / "drop.log")
    _write(src / "keep.log")
    dst = tmp_path / "dst"
    rec_copy(src, dst, False)
    assert (dst / "keep.log").exists()
    assert not (dst / "drop.log").exists()


def test_rec_copy_excl(tmp_path):
    src = tmp_path / "src"
    _write(src / "target" / "big.bin")
    _write(src / "lib.rs")
    dst = tmp_path / "dst"
    rec_copy_excl(src, dst, False, [src / "target"])
    assert (dst / "lib.rs").exists()
    assert not (dst / "target").exists()


def test_rec_copy_single_file_creates_parent(tmp_path):
    src = _write(tmp_path / "one.txt", "one")
    dst = tmp_path / "deep" / "dir" / "copy.txt"
    rec_copy(src, dst, False)
    assert dst.read_text() == "one"


def test_rec_copy_leaves_up_to_date_file(tmp_path):
    src = tmp_path / "src"
    source_file = _write(src / "f.txt", "aaaa")
    dst = tmp_path / "dst"
    target = _write(dst / "f.txt", "bbbb")
    later = source_file.stat().st_mtime + 100
    os.utime(target, (later, later))
    rec_copy(src, dst, False)
    assert target.read_text() == "bbbb"


def test_rec_copy_refreshes_changed_file(tmp_path):
    src = tmp_path / "src"
    _write(src / "f.txt", "new content")
    dst = tmp_path / "dst"
    target = _write(dst / "f.txt", "old")
    rec_copy(src, dst, False)
    assert target.read_text() == "new content"


def test_rec_copy_replaces_file_with_directory(tmp_path):
    src = tmp_path / "src"
    _write(src / "thing" / "inner.txt", "inner")
    dst = tmp_path / "dst"
    _write(dst / "thing", "was a file")
    rec_copy(src, dst, False)
    assert (dst / "thing" / "inner.txt").read_text() == "inner"