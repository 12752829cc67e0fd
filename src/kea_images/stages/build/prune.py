# src/kea_images/stages/build/prune.py
"""Stage canônico: prune (poda e relocação de artefatos).

Ordem das ações (sobre o staging root):
1. remove descritores do libtool (`*.la`);
2. `strip --strip-debug` em todo executável e biblioteca ELF sob o prefixo,
   registrando tamanho antes/depois por arquivo;
3. move o diretório de hooks para o local de espera (`/hooks`) e deixa um
   diretório vazio no local original.

Todos os Stages a jusante leem daqui: nenhum deles vê descritores, símbolos
de debug ou hooks no local original.

Payload:
payload:
  prune:
    removed: [string]
    stripped: {path: [bytes_before, bytes_after]}
    hooks: [string]
"""

from __future__ import annotations

import fnmatch
import posixpath
from dataclasses import dataclass
from typing import Dict, List, Optional

from kea_images.core.exceptions import MissingArtifactError
from kea_images.core.pipeline.context import RunContext
from kea_images.core.pipeline.types import StageKind
from kea_images.fs.snapshot import Snapshot
from kea_images.stages._shared import SnapshotStage, StageOutcome, run_tool


ELF_MAGIC = b"\x7fELF"


def is_elf(path) -> bool:
    try:
        with open(path, "rb") as f:
            return f.read(4) == ELF_MAGIC
    except OSError:
        return False


@dataclass
class PruneStage(SnapshotStage):
    id: str = "prune"
    kind: StageKind = StageKind.PRUNE
    base: Optional[str] = "install"

    def _remove_descriptors(self, snap: Snapshot, staging_root: str, patterns: List[str]) -> List[str]:
        removed: List[str] = []
        for path in list(snap.walk(staging_root)):
            name = posixpath.basename(path)
            host = snap.resolve(path)
            if host.is_file() and any(fnmatch.fnmatch(name, pat) for pat in patterns):
                snap.remove(path)
                removed.append(path)
        return removed

    def _strip(self, ctx: RunContext, snap: Snapshot, top: str, command: List[str]) -> Dict[str, List[int]]:
        sizes: Dict[str, List[int]] = {}
        for path in list(snap.walk(top)):
            host = snap.resolve(path)
            if host.is_symlink() or not host.is_file() or not is_elf(host):
                continue
            before = host.stat().st_size
            run_tool(ctx, self.id, command + [str(host)])
            sizes[path] = [before, host.stat().st_size]
        return sizes

    def build(self, ctx: RunContext, snap: Snapshot) -> StageOutcome:
        cfg = ctx.section("prune")
        layout = ctx.catalog.layout

        removed = self._remove_descriptors(snap, layout.staging_root, list(cfg.get("descriptor_patterns") or ["*.la"]))

        command = list(cfg.get("strip_command") or ["strip", "--strip-debug"])
        sizes = self._strip(ctx, snap, layout.staged(layout.prefix), command)
        bytes_before = sum(v[0] for v in sizes.values())
        bytes_after = sum(v[1] for v in sizes.values())

        staged_hooks = layout.staged(layout.hooks_dir)
        if not snap.is_dir(staged_hooks):
            raise MissingArtifactError(
                message=f"hooks directory not found: {staged_hooks}",
                details={"stage": self.id, "path": staged_hooks},
                hint="A instalação não produziu o diretório de hooks esperado.",
            )
        snap.move(staged_hooks, layout.holding_dir)
        snap.mkdir(staged_hooks)
        hooks = snap.listdir(layout.holding_dir)

        ctx.log(
            stage_id=self.id,
            level="info",
            message="artifacts pruned",
            removed=len(removed),
            stripped=len(sizes),
            bytes_saved=bytes_before - bytes_after,
            hooks=len(hooks),
        )

        return StageOutcome(
            summary=f"removed {len(removed)} descriptors, stripped {len(sizes)} files, relocated {len(hooks)} hooks",
            metrics={
                "descriptors_removed": len(removed),
                "files_stripped": len(sizes),
                "bytes_before": bytes_before,
                "bytes_after": bytes_after,
                "bytes_saved": bytes_before - bytes_after,
                "hooks": len(hooks),
            },
            artifacts={"holding_dir": layout.holding_dir},
            payload={"prune": {"removed": removed, "stripped": sizes, "hooks": hooks}},
        )
