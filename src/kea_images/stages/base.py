# src/kea_images/stages/base.py
"""Stage canônico: base.

Materializa a camada base fixada (`base.reference`), compartilhada por todo
o grafo. Fontes, em ordem de prioridade:

- `base.rootfs`: diretório com um root filesystem já extraído, ou tarball
  local de rootfs (qualquer compressão suportada por `tarfile`);
- `base.url` + `base.sha256`: tarball de rootfs baixado pelo mesmo fetcher
  do código-fonte (respeita o espelho local) e conferido contra o pin.

Sem nenhuma das duas, ou com URL sem pin, o build é recusado: uma base
vazia produziria imagens sem shell nem libc. Depois de materializada, a
base precisa conter `base.required_paths`.

Limites explícitos:
- NÃO instala pacotes.
- NÃO cria identidades de serviço (ver Stage `runtime`).
"""

from __future__ import annotations

import shutil
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from kea_images.core.exceptions import EngineConfigurationError, VerificationError
from kea_images.core.pipeline.context import RunContext
from kea_images.core.pipeline.types import StageKind
from kea_images.fs.snapshot import Snapshot
from kea_images.toolchain.fetch import check_sha256

from ._shared import SnapshotStage, StageOutcome, release_fetcher


BASE_LABEL = "org.kea-images.base"


def _unpack(tarball: Path, snap: Snapshot) -> None:
    # rootfs reais trazem symlinks absolutos (ex.: /bin/sh -> /bin/busybox),
    # recusados pelo filtro "data".
    try:
        with tarfile.open(tarball, "r:*") as tf:
            tf.extractall(snap.rootfs, filter="tar")
    except (tarfile.TarError, OSError) as e:
        raise VerificationError(
            message=f"cannot unpack base rootfs {tarball.name}",
            details={"rootfs": str(tarball), "reason": str(e)},
        ) from e


@dataclass
class BaseLayerStage(SnapshotStage):
    id: str = "base"
    kind: StageKind = StageKind.BASE
    base: Optional[str] = None

    def _from_local(self, source: Path, snap: Snapshot) -> str:
        if source.is_dir():
            shutil.copytree(source, snap.rootfs, symlinks=True, dirs_exist_ok=True)
            return "directory"
        if source.is_file():
            _unpack(source, snap)
            return "tarball"
        raise EngineConfigurationError(
            message=f"base rootfs not found: {source}",
            details={"rootfs": str(source)},
            hint="Ajuste base.rootfs para um diretório ou tarball existente.",
        )

    def _from_url(self, ctx: RunContext, url: str, sha256: Optional[str], snap: Snapshot) -> str:
        if not sha256:
            raise EngineConfigurationError(
                message="base rootfs url is not pinned",
                details={"url": url},
                hint="Defina base.sha256 com o hash do tarball de base.rootfs/base.url.",
            )
        name = url.rstrip("/").rsplit("/", 1)[-1]
        tarball = release_fetcher(ctx).fetch(url, snap.root / "downloads" / name)
        check_sha256(tarball, sha256)
        _unpack(tarball, snap)
        return "download"

    def build(self, ctx: RunContext, snap: Snapshot) -> StageOutcome:
        cfg = ctx.section("base")
        reference = str(cfg.get("reference") or "scratch")
        rootfs = cfg.get("rootfs")
        url = cfg.get("url")

        if rootfs:
            origin = self._from_local(Path(rootfs), snap)
        elif url:
            origin = self._from_url(ctx, str(url), cfg.get("sha256"), snap)
        else:
            raise EngineConfigurationError(
                message="no base rootfs configured",
                details={"reference": reference},
                hint="Defina base.rootfs (local) ou base.url + base.sha256.",
            )

        required: List[str] = [str(p) for p in (cfg.get("required_paths") or [])]
        missing = [p for p in required if not snap.exists(p)]
        if missing:
            raise VerificationError(
                message=f"base rootfs is missing {', '.join(missing)}",
                details={"reference": reference, "origin": origin, "missing": missing},
                hint="A camada base precisa de shell e utilitários mínimos.",
            )

        snap.set_config(labels={BASE_LABEL: reference})
        ctx.log(stage_id=self.id, level="info", message="base layer materialized", reference=reference, origin=origin)

        return StageOutcome(
            summary=f"base layer {reference} ({origin})",
            payload={"base": {"reference": reference, "origin": origin}},
        )
