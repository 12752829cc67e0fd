# tests/core/toolchain/test_runner_and_gpg.py
"""
Testes do CommandRunner, da expansão de comandos configurados e da
verificação OpenPGP (com toolchain simulado).
"""
import sys
from pathlib import Path

import pytest

try:
    from kea_images.core.exceptions import VerificationError
    from kea_images.toolchain.gpg import GpgVerifier
    from kea_images.toolchain.runner import CommandRunner, render_command, tool_env
except Exception as e:
    GpgVerifier = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None

from tests.fixtures.fake_toolchain import make_release


def _require():
    if GpgVerifier is None:
        pytest.fail(f"Missing toolchain API. Import error: {_IMPORT_ERR}")


def test_render_command_expands_lists():
    _require()
    args = render_command(
        ["apk", "--root", "{root}", "--no-cache", "add", "{packages}"],
        root="/w/rootfs",
        packages=["boost-libs", "libpq"],
    )
    assert args == ["apk", "--root", "/w/rootfs", "--no-cache", "add", "boost-libs", "libpq"]


def test_tool_env_is_deterministic():
    _require()
    env = tool_env(SOURCE_DATE_EPOCH="0")
    assert env == {"LC_ALL": "C", "TZ": "UTC", "SOURCE_DATE_EPOCH": "0"}


def test_runner_reports_exit_code(tmp_path: Path):
    _require()
    result = CommandRunner().run([sys.executable, "-c", "import sys; sys.stderr.write('bad\\n'); sys.exit(3)"], cwd=tmp_path)
    assert result.returncode == 3
    assert not result.ok
    assert result.tail() == "bad"


def test_runner_missing_binary_is_127():
    _require()
    result = CommandRunner().run(["kea-images-no-such-tool"])
    assert result.returncode == 127


def test_gpg_verifies_good_signature(tmp_path: Path, fake_runner):
    _require()
    mirror = make_release(tmp_path / "m", "2.4.1")
    gpg = GpgVerifier(fake_runner, homedir=tmp_path / "gnupg")

    gpg.import_key(mirror / "isc-keyblock.asc")
    gpg.verify(mirror / "kea-2.4.1.tar.gz.asc", mirror / "kea-2.4.1.tar.gz")

    verify = fake_runner.commands("gpg")[-1]
    assert verify[:5] == ["gpg", "--batch", "--no-tty", "--homedir", str(tmp_path / "gnupg")]


def test_gpg_rejects_bad_signature(tmp_path: Path, fake_runner):
    _require()
    mirror = make_release(tmp_path / "m", "2.4.1", corrupt_signature=True)
    gpg = GpgVerifier(fake_runner, homedir=tmp_path / "gnupg")
    gpg.import_key(mirror / "isc-keyblock.asc")

    with pytest.raises(VerificationError) as exc:
        gpg.verify(mirror / "kea-2.4.1.tar.gz.asc", mirror / "kea-2.4.1.tar.gz")
    assert "BAD signature" in exc.value.details["stderr_tail"]


def test_gpg_rejects_invalid_key(tmp_path: Path, fake_runner):
    _require()
    key = tmp_path / "key.asc"
    key.write_text("not a key\n", encoding="utf-8")
    with pytest.raises(VerificationError):
        GpgVerifier(fake_runner, homedir=tmp_path / "gnupg").import_key(key)
