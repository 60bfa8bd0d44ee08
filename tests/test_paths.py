"""Tests for the path resolver."""

import pytest

from datalink.core import paths
from datalink.core.paths import PathParts


class TestNormalize:
    """Test canonical path normalization."""

    def test_separators_collapse(self):
        assert paths.normalize("/a//b\\c/") == "a/b/c/"
        assert paths.normalize("\\bucket\\file.txt") == "bucket/file.txt"

    def test_root_variants(self):
        assert paths.normalize("") == ""
        assert paths.normalize("/") == ""
        assert paths.normalize("//") == ""
        assert paths.is_root("/")

    def test_dot_segments(self):
        assert paths.normalize("a/./b/../c") == "a/c"
        assert paths.normalize("a/b/..") == "a/"
        assert paths.normalize("../../a") == "a"

    def test_idempotent(self):
        samples = ["", "/", "a", "a/", "/a//b/", "a\\b\\c.txt", "a/./b/../", "x/y/.."]
        for sample in samples:
            once = paths.normalize(sample)
            assert paths.normalize(once) == once


class TestClassification:
    """Test syntactic file/directory classification."""

    def test_directory_and_file(self):
        assert paths.is_directory("bucket/dir/")
        assert paths.is_directory("")
        assert paths.is_file("bucket/dir/file.txt")
        assert not paths.is_file("bucket/")

    def test_split(self):
        assert paths.split("bucket/dir/file.txt") == PathParts("bucket", "dir/file.txt")
        assert paths.split("/bucket/").is_container_root
        assert paths.split("") == PathParts("", "")
        assert not paths.split("").is_container_root


class TestHelpers:
    """Test path combination helpers."""

    def test_combine(self):
        assert paths.combine("a/", "b/c.txt") == "a/b/c.txt"
        assert paths.combine("a", "b/") == "a/b/"
        assert paths.combine("", "x") == "x"
        assert paths.combine() == ""

    def test_parent_and_name(self):
        assert paths.parent("a/b/c.txt") == "a/b/"
        assert paths.parent("a/b/") == "a/"
        assert paths.parent("a") == ""
        assert paths.name("a/b/") == "b"
        assert paths.name("a/b/c.txt") == "c.txt"
        assert paths.extension("x/y.tar.gz") == ".gz"

    def test_relative_to(self):
        assert paths.relative_to("a/b/c", "a/") == "b/c"
        assert paths.relative_to("a/b/", "a") == "b/"
        assert paths.relative_to("x/y", "") == "x/y"
        with pytest.raises(ValueError):
            paths.relative_to("x/y", "a/")

    def test_ancestors(self):
        assert list(paths.ancestors("a/b/c.txt")) == ["a/b/", "a/"]
        assert list(paths.ancestors("a")) == []
