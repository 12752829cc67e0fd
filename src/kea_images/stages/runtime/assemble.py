# src/kea_images/stages/runtime/assemble.py
"""Stage canônico: runtime (ambiente de runtime comum).

Parte da camada base e lê do Stage `prune`. Ordem das ações:
1. cria a identidade de serviço (grupo + usuário, ids fixos);
2. instala o conjunto de pacotes de runtime (instalador externo);
3. cria, com dono na identidade, os diretórios documentados e a árvore de
   montagem voltada ao usuário;
4. copia `lib` e `include` do prefixo instalado;
5. grava o caminho de busca do linker e regenera o cache;
6. instala o entrypoint de despacho em `/entrypoint.sh`.

A identidade é apenas criada: nada neste build troca de usuário.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import List, Optional

from kea_images.catalog.build_catalog import ServiceIdentity
from kea_images.core.exceptions import EngineConfigurationError
from kea_images.core.pipeline.context import RunContext
from kea_images.core.pipeline.types import StageKind
from kea_images.fs.snapshot import Snapshot
from kea_images.stages._shared import SnapshotStage, StageOutcome, refresh_linker_cache, run_tool
from kea_images.toolchain.runner import render_command


ENTRYPOINT_PATH = "/entrypoint.sh"


def _entries(text: str) -> List[List[str]]:
    return [line.split(":") for line in text.splitlines() if line.strip() and not line.startswith("#")]


def ensure_identity(snap: Snapshot, identity: ServiceIdentity) -> bool:
    """
    Garante grupo e usuário da identidade em `/etc/group` e `/etc/passwd`.

    Idempotente. Uma entrada existente com o mesmo nome e id diferente (ou o
    mesmo id sob outro nome) é EngineConfigurationError.

    Returns:
        bool: True se alguma entrada foi adicionada.
    """
    group_text = snap.read_text("/etc/group") if snap.exists("/etc/group") else ""
    passwd_text = snap.read_text("/etc/passwd") if snap.exists("/etc/passwd") else ""
    changed = False

    group_present = False
    for fields in _entries(group_text):
        if len(fields) < 3:
            continue
        name, gid = fields[0], fields[2]
        if name == identity.group or gid == str(identity.gid):
            if name != identity.group or gid != str(identity.gid):
                raise EngineConfigurationError(
                    message=f"group conflict in base layer: {name}:{gid}",
                    details={"expected": f"{identity.group}:{identity.gid}", "found": f"{name}:{gid}"},
                    hint="Ajuste service_identity ou a camada base.",
                )
            group_present = True
    if not group_present:
        group_text = _append(group_text, f"{identity.group}:x:{identity.gid}:")
        changed = True

    user_present = False
    for fields in _entries(passwd_text):
        if len(fields) < 4:
            continue
        name, uid, gid = fields[0], fields[2], fields[3]
        if name == identity.user or uid == str(identity.uid):
            if name != identity.user or uid != str(identity.uid) or gid != str(identity.gid):
                raise EngineConfigurationError(
                    message=f"user conflict in base layer: {name}:{uid}",
                    details={"expected": f"{identity.user}:{identity.uid}", "found": f"{name}:{uid}:{gid}"},
                    hint="Ajuste service_identity ou a camada base.",
                )
            user_present = True
    if not user_present:
        passwd_text = _append(
            passwd_text,
            f"{identity.user}:x:{identity.uid}:{identity.gid}:{identity.user}:{identity.home}:{identity.shell}",
        )
        changed = True

    if changed:
        snap.write_text("/etc/group", group_text)
        snap.write_text("/etc/passwd", passwd_text)
    return changed


def _append(text: str, line: str) -> str:
    if text and not text.endswith("\n"):
        text += "\n"
    return text + line + "\n"


def entrypoint_script(configured: Optional[str]) -> str:
    if configured:
        return Path(configured).read_text(encoding="utf-8")
    return resources.files("kea_images").joinpath("resources", "entrypoint.sh").read_text(encoding="utf-8")


@dataclass
class RuntimeStage(SnapshotStage):
    id: str = "runtime"
    kind: StageKind = StageKind.RUNTIME
    base: Optional[str] = "base"
    reads: List[str] = field(default_factory=lambda: ["prune"])

    def build(self, ctx: RunContext, snap: Snapshot) -> StageOutcome:
        cfg = ctx.section("runtime")
        catalog = ctx.catalog
        layout = catalog.layout
        identity = catalog.identity
        prune = ctx.snapshots.get("prune")
        warnings: List[str] = []

        # 1. identidade
        created = ensure_identity(snap, identity)

        # 2. pacotes de runtime
        packages = list(cfg.get("packages") or [])
        installer = cfg.get("install_command")
        if installer and packages:
            run_tool(ctx, self.id, render_command(installer, root=str(snap.rootfs), packages=packages))
        elif packages:
            warnings.append("runtime.install_command not configured; runtime packages were not installed")

        # 3. diretórios com dono na identidade
        owned = list(cfg.get("service_dirs") or []) + list(cfg.get("mount_dirs") or [])
        for path in owned:
            snap.mkdir(path, owner=(identity.uid, identity.gid), mode=0o755)

        # 4. bibliotecas e headers instalados
        ctx.snapshots.copy(prune, layout.staged(layout.lib_dir), snap, layout.lib_dir)
        ctx.snapshots.copy(prune, layout.staged(layout.include_dir), snap, layout.include_dir)
        snap.mkdir(layout.hooks_dir)

        # 5. linker
        library_dirs = list(cfg.get("library_dirs") or [layout.lib_dir, layout.hooks_dir])
        ld_conf = str(cfg.get("ld_conf_path") or "/etc/ld.so.conf.d/kea.conf")
        snap.write_text(ld_conf, "".join(f"{d}\n" for d in library_dirs), mode=0o644)
        fingerprint = refresh_linker_cache(ctx, self.id, snap)

        # 6. entrypoint de despacho
        snap.write_text(ENTRYPOINT_PATH, entrypoint_script(cfg.get("entrypoint_script")), mode=0o755)
        snap.set_config(entrypoint=[ENTRYPOINT_PATH], cmd=None)

        return StageOutcome(
            summary=f"runtime assembled for {identity.user}:{identity.group}",
            metrics={"packages": len(packages), "owned_dirs": len(owned)},
            warnings=warnings,
            artifacts={"entrypoint": ENTRYPOINT_PATH, "ldcache_fingerprint": fingerprint},
            payload={
                "runtime": {
                    "identity": {"user": identity.user, "uid": identity.uid, "group": identity.group, "gid": identity.gid},
                    "identity_created": created,
                    "owned_dirs": owned,
                    "library_dirs": library_dirs,
                }
            },
        )
