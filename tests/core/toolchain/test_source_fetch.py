# tests/core/toolchain/test_source_fetch.py
"""
Testes da aquisição de arquivos de release (espelho local e HTTP).

O transporte HTTP é exercitado com uma sessão `requests` falsa: nenhum
teste abre conexões de rede.
"""
import hashlib
from pathlib import Path

import pytest
import requests

try:
    from kea_images.core.exceptions import VerificationError
    from kea_images.toolchain.fetch import (
        SourceFetcher,
        archive_name,
        check_sha256,
        release_url,
        signature_name,
    )
except Exception as e:
    SourceFetcher = None
    _IMPORT_ERR = e
else:
    _IMPORT_ERR = None


class _Response:
    def __init__(self, chunks, status=200):
        self.chunks = chunks
        self.status = status

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} Client Error")

    def iter_content(self, chunk_size=1):
        yield from self.chunks


class _Session:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def get(self, url, stream=False, timeout=None):
        self.calls.append((url, stream, timeout))
        return self.response


def _require():
    if SourceFetcher is None:
        pytest.fail(f"Missing fetch API. Import error: {_IMPORT_ERR}")


def test_release_names():
    _require()
    assert archive_name("2.4.1") == "kea-2.4.1.tar.gz"
    assert signature_name("2.4.1") == "kea-2.4.1.tar.gz.asc"
    assert release_url("https://ftp.isc.org/isc/kea/", "2.4.1", "kea-2.4.1.tar.gz") == (
        "https://ftp.isc.org/isc/kea/2.4.1/kea-2.4.1.tar.gz"
    )


def test_fetch_from_mirror(tmp_path: Path):
    _require()
    mirror = tmp_path / "mirror"
    mirror.mkdir()
    (mirror / "kea-2.4.1.tar.gz").write_bytes(b"archive")

    fetcher = SourceFetcher(mirror_dir=mirror)
    dest = fetcher.fetch("https://ftp.isc.org/isc/kea/2.4.1/kea-2.4.1.tar.gz", tmp_path / "dl" / "kea-2.4.1.tar.gz")
    assert dest.read_bytes() == b"archive"


def test_missing_mirror_file_is_verification_error(tmp_path: Path):
    _require()
    fetcher = SourceFetcher(mirror_dir=tmp_path)
    with pytest.raises(VerificationError) as exc:
        fetcher.fetch("https://ftp.isc.org/isc/kea/2.4.1/kea-2.4.1.tar.gz.asc", tmp_path / "dl" / "sig")
    assert exc.value.details["file"] == "kea-2.4.1.tar.gz.asc"


def test_fetch_over_http_streams_to_disk(tmp_path: Path):
    _require()
    session = _Session(_Response([b"abc", b"", b"def"]))
    fetcher = SourceFetcher(session=session, timeout=5)

    dest = fetcher.fetch("https://example.invalid/kea-2.4.1.tar.gz", tmp_path / "a.tar.gz")

    assert dest.read_bytes() == b"abcdef"
    assert session.calls == [("https://example.invalid/kea-2.4.1.tar.gz", True, 5)]


def test_http_error_leaves_no_partial_file(tmp_path: Path):
    _require()
    fetcher = SourceFetcher(session=_Session(_Response([], status=404)))
    dest = tmp_path / "a.tar.gz"

    with pytest.raises(VerificationError):
        fetcher.fetch("https://example.invalid/kea-9.9.9.tar.gz", dest)
    assert not dest.exists()


def test_check_sha256(tmp_path: Path):
    _require()
    path = tmp_path / "f"
    path.write_bytes(b"kea")

    check_sha256(path, hashlib.sha256(b"kea").hexdigest().upper())
    with pytest.raises(VerificationError):
        check_sha256(path, "0" * 64)
