# src/kea_images/stages/source/acquire.py
"""Stage canônico: source (aquisição e verificação do código-fonte).

Responsabilidades:
- Derivar nomes e URLs do release a partir da versão (único input externo).
- Buscar archive, assinatura destacada e chave pública do publicador.
- Importar a chave em keyring isolado e verificar a assinatura.
- Desempacotar o archive em `/build/kea-<versão>` (seguro contra path traversal).

Princípios:
- Verificação é obrigatória: qualquer falha é VerificationError, nunca warning.
- Nada é desempacotado antes da assinatura ser verificada.

Payload:
payload:
  source:
    version: string
    archive: string
    archive_sha256: string
    source_dir: string
"""

from __future__ import annotations

import hashlib
import posixpath
import tarfile
from dataclasses import dataclass, field
from typing import List, Optional

from kea_images.core.exceptions import VerificationError
from kea_images.core.pipeline.context import RunContext
from kea_images.core.pipeline.types import StageKind
from kea_images.fs.snapshot import Snapshot
from kea_images.stages._shared import SnapshotStage, StageOutcome, release_fetcher
from kea_images.toolchain.fetch import (
    archive_name,
    check_sha256,
    release_url,
    signature_name,
)
from kea_images.toolchain.gpg import GpgVerifier


BUILD_ROOT = "/build"


def source_dir(version: str) -> str:
    """Diretório (na imagem) onde o código-fonte da versão é desempacotado."""
    return posixpath.join(BUILD_ROOT, f"kea-{version}")


@dataclass
class SourceStage(SnapshotStage):
    id: str = "source"
    kind: StageKind = StageKind.SOURCE
    base: Optional[str] = "base"
    reads: List[str] = field(default_factory=list)

    def build(self, ctx: RunContext, snap: Snapshot) -> StageOutcome:
        cfg = ctx.section("source")
        version = ctx.version
        template = str(cfg.get("archive_template") or "kea-{version}.tar.gz")
        suffix = str(cfg.get("signature_suffix") or ".asc")
        base_url = str(cfg.get("base_url") or "")

        archive = archive_name(version, template)
        signature = signature_name(version, template, suffix)
        downloads = snap.root / "downloads"
        fetcher = release_fetcher(ctx)

        archive_path = fetcher.fetch(release_url(base_url, version, archive), downloads / archive)
        signature_path = fetcher.fetch(release_url(base_url, version, signature), downloads / signature)
        key_url = str(cfg.get("key_url") or "")
        key_path = fetcher.fetch(key_url, downloads / key_url.rstrip("/").rsplit("/", 1)[-1])

        if cfg.get("sha256"):
            check_sha256(archive_path, str(cfg["sha256"]))

        gpg = GpgVerifier(
            ctx.runner,
            homedir=snap.root / "gnupg",
            command=cfg.get("gpg_command") or ["gpg"],
        )
        gpg.import_key(key_path)
        gpg.verify(signature_path, archive_path)
        ctx.log(stage_id=self.id, level="info", message="signature verified", archive=archive)

        target = source_dir(version)
        snap.mkdir(BUILD_ROOT)
        try:
            with tarfile.open(archive_path, "r:*") as tf:
                tf.extractall(snap.resolve(BUILD_ROOT), filter="data")
        except (tarfile.TarError, OSError) as e:
            raise VerificationError(
                message=f"cannot unpack {archive}",
                details={"archive": archive, "reason": str(e)},
                hint="O archive verificado não pôde ser desempacotado com segurança.",
            ) from e

        if not snap.is_dir(target):
            raise VerificationError(
                message=f"archive does not contain {posixpath.basename(target)}/",
                details={"archive": archive, "expected_dir": target},
            )

        digest = hashlib.sha256(archive_path.read_bytes()).hexdigest()
        return StageOutcome(
            summary=f"kea {version} verified and unpacked",
            metrics={"archive_bytes": archive_path.stat().st_size},
            artifacts={"source_dir": target},
            payload={
                "source": {
                    "version": version,
                    "archive": archive,
                    "archive_sha256": digest,
                    "source_dir": target,
                }
            },
        )
