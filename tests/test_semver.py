"""Tests for semantic version bumps."""

import pytest

from selsync.change.semver import bump_version, parse_version


def test_patch_bump():
    assert bump_version("0.1.0") == "0.1.1"
    assert bump_version("0.1.9", "patch") == "0.1.10"


def test_minor_bump_resets_patch():
    assert bump_version("1.4.2", "minor") == "1.5.0"


def test_major_bump_resets_minor_and_patch():
    assert bump_version("1.4.2", "major") == "2.0.0"


def test_quoted_and_prefixed_versions():
    assert parse_version('"0.2.3"') == (0, 2, 3)
    assert bump_version("v1.0.0") == "1.0.1"


def test_prerelease_suffix_dropped():
    assert bump_version("1.2.3-rc.1") == "1.2.4"


def test_unknown_kind_rejected():
    with pytest.raises(ValueError):
        bump_version("1.0.0", "micro")


def test_not_a_version():
    with pytest.raises(ValueError):
        parse_version("latest")
