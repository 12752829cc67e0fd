# src/kea_images/stages/build/compile.py
"""Stage canônico: compile.

Responsabilidades:
- Provisionar o toolchain (opcional, via instalador externo configurado).
- `./configure` com o conjunto fixo de flags do build.
- `make -j<N>`.

Limites explícitos:
- NÃO instala no staging root (ver Stage `install`); a separação permite
  iterar a instalação sem recompilar.
- Qualquer código de saída não-zero é CompilationError.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Optional

from kea_images.core.exceptions import MissingArtifactError
from kea_images.core.pipeline.context import RunContext
from kea_images.core.pipeline.types import StageKind
from kea_images.fs.snapshot import Snapshot
from kea_images.stages._shared import SnapshotStage, StageOutcome, run_tool
from kea_images.stages.source.acquire import source_dir
from kea_images.toolchain.runner import render_command


CONFIGURE_FLAGS = (
    "--with-openssl",
    "--with-mysql",
    "--with-pgsql",
    "--with-gssapi",
    "--disable-static",
)


def configure_args(prefix: str, extra: Optional[List[str]] = None) -> List[str]:
    return ["./configure", f"--prefix={prefix}", *CONFIGURE_FLAGS, *(extra or [])]


def make_jobs(configured: Optional[int]) -> int:
    if configured:
        return max(1, int(configured))
    return os.cpu_count() or 1


def require_source(snap: Snapshot, version: str, stage_id: str) -> str:
    path = source_dir(version)
    if not snap.is_dir(path):
        raise MissingArtifactError(
            message=f"source tree not found: {path}",
            details={"stage": stage_id, "path": path},
        )
    return path


@dataclass
class CompileStage(SnapshotStage):
    id: str = "compile"
    kind: StageKind = StageKind.COMPILE
    base: Optional[str] = "source"

    def build(self, ctx: RunContext, snap: Snapshot) -> StageOutcome:
        toolchain = ctx.section("toolchain")
        compile_cfg = ctx.section("compile")
        prefix = ctx.catalog.layout.prefix

        provisioned = False
        if toolchain.get("install_command"):
            run_tool(
                ctx,
                self.id,
                render_command(
                    toolchain["install_command"],
                    root=str(snap.rootfs),
                    packages=list(toolchain.get("packages") or []),
                ),
            )
            provisioned = True

        src = snap.resolve(require_source(snap, ctx.version, self.id))
        configure = configure_args(prefix, list(compile_cfg.get("extra_configure_flags") or []))
        run_tool(ctx, self.id, configure, cwd=src)

        jobs = make_jobs(compile_cfg.get("jobs"))
        make = list(compile_cfg.get("make_command") or ["make"])
        run_tool(ctx, self.id, make + [f"-j{jobs}"], cwd=src)

        return StageOutcome(
            summary=f"compiled kea {ctx.version} with {jobs} jobs",
            metrics={"jobs": jobs},
            payload={
                "compile": {
                    "configure": configure,
                    "toolchain_provisioned": provisioned,
                }
            },
        )
