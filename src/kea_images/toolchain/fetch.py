# src/kea_images/toolchain/fetch.py
"""
Aquisição dos arquivos de release (archive, assinatura, chave pública).

É a única dependência de rede do build e é totalmente isolável: com
`source.mirror_dir` configurado, os arquivos são lidos de um diretório
local e nenhuma conexão é aberta.

Qualquer arquivo ausente ou download com falha vira VerificationError:
sem arquivos verificáveis não existe build.
"""

from __future__ import annotations

import hashlib
import shutil
from pathlib import Path
from typing import Optional

import requests

from kea_images.core.exceptions import VerificationError


def archive_name(version: str, template: str = "kea-{version}.tar.gz") -> str:
    return template.format(version=version)


def signature_name(version: str, template: str = "kea-{version}.tar.gz", suffix: str = ".asc") -> str:
    return archive_name(version, template) + suffix


def release_url(base_url: str, version: str, name: str) -> str:
    return f"{base_url.rstrip('/')}/{version}/{name}"


class SourceFetcher:
    """Busca arquivos do release via HTTP(S) ou a partir de um espelho local."""

    def __init__(
        self,
        *,
        mirror_dir: Optional[Path] = None,
        timeout: float = 60,
        session: Optional[requests.Session] = None,
    ):
        self.mirror_dir = Path(mirror_dir) if mirror_dir else None
        self.timeout = timeout
        self.session = session

    def fetch(self, url: str, dest: Path) -> Path:
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        name = url.rstrip("/").rsplit("/", 1)[-1]

        if self.mirror_dir is not None:
            source = self.mirror_dir / name
            if not source.is_file():
                raise VerificationError(
                    message=f"release file not found in mirror: {name}",
                    details={"file": name, "mirror_dir": str(self.mirror_dir)},
                    hint="Coloque archive, assinatura e chave no diretório espelho.",
                )
            shutil.copyfile(source, dest)
            return dest

        session = self.session or requests.Session()
        try:
            with session.get(url, stream=True, timeout=self.timeout) as resp:
                resp.raise_for_status()
                with open(dest, "wb") as f:
                    for chunk in resp.iter_content(chunk_size=65536):
                        if chunk:
                            f.write(chunk)
        except requests.RequestException as e:
            if dest.exists():
                dest.unlink()
            raise VerificationError(
                message=f"download failed: {name}",
                details={"file": name, "url": url, "reason": str(e)},
                hint="Verifique a conectividade ou use --mirror-dir para um build offline.",
            ) from e
        return dest


def check_sha256(path: Path, expected: str) -> None:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    actual = h.hexdigest()
    if actual != expected.strip().lower():
        raise VerificationError(
            message=f"sha256 mismatch for {Path(path).name}",
            details={"file": Path(path).name, "expected": expected, "actual": actual},
        )
