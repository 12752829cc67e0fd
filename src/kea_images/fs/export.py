# src/kea_images/fs/export.py
"""
Export determinístico de snapshots terminais em imagens.

Cada imagem terminal vira dois arquivos em `output_dir`:
    - `<image>.tar`: rootfs em tar PAX não comprimido
    - `<image>.json`: config da imagem (entrypoint, cmd, env, labels) e
                       o digest do rootfs

Regras de reprodutibilidade:
    - entradas em ordem lexicográfica estável
    - mtime fixo (`build.source_date_epoch`)
    - donos numéricos vindos do sidecar do snapshot, sem uname/gname
    - modos explícitos do sidecar; na ausência, 0755 para diretórios e
      executáveis e 0644 para os demais arquivos

A escrita é atômica (arquivo temporário + rename): nenhum arquivo parcial
permanece em `output_dir` quando o export falha.
"""

from __future__ import annotations

import json
import os
import stat
import tarfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from kea_images.core.exceptions import LinkerCacheStaleError

from .snapshot import Snapshot, sha256_file


VERSION_LABEL = "org.opencontainers.image.version"


@dataclass(frozen=True)
class ExportedImage:
    """Imagem terminal exportada e seus digests."""

    name: str
    stage_id: str
    tar_path: Path
    config_path: Path
    tar_sha256: str
    config_sha256: str
    config: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "stage_id": self.stage_id,
            "tar_path": str(self.tar_path),
            "config_path": str(self.config_path),
            "tar_sha256": self.tar_sha256,
            "config_sha256": self.config_sha256,
        }


def _default_mode(host: Path) -> int:
    st = host.lstat()
    if stat.S_ISLNK(st.st_mode):
        return 0o777
    if stat.S_ISDIR(st.st_mode):
        return 0o755
    return 0o755 if st.st_mode & 0o111 else 0o644


def _tarinfo(snapshot: Snapshot, image_path: str, mtime: int) -> Optional[tarfile.TarInfo]:
    host = snapshot.resolve(image_path)
    ti = tarfile.TarInfo(name=image_path.lstrip("/"))
    st = host.lstat()
    if stat.S_ISLNK(st.st_mode):
        ti.type = tarfile.SYMTYPE
        ti.linkname = os.readlink(host)
    elif stat.S_ISDIR(st.st_mode):
        ti.type = tarfile.DIRTYPE
    elif stat.S_ISREG(st.st_mode):
        ti.type = tarfile.REGTYPE
        ti.size = st.st_size
    else:
        return None

    uid, gid = snapshot.owner_of(image_path)
    mode = snapshot.mode_of(image_path)
    ti.mode = mode if mode is not None else _default_mode(host)
    ti.uid = uid
    ti.gid = gid
    ti.uname = ""
    ti.gname = ""
    ti.mtime = int(mtime)
    return ti


def write_rootfs_tar(snapshot: Snapshot, path: Path, *, mtime: int = 0) -> str:
    """Escreve o rootfs do snapshot como tar determinístico e retorna seu sha256."""
    path = Path(path)
    tmp = path.with_name(path.name + ".tmp")
    try:
        with tarfile.open(tmp, "w", format=tarfile.PAX_FORMAT) as tar:
            for image_path in snapshot.walk("/"):
                ti = _tarinfo(snapshot, image_path, mtime)
                if ti is None:
                    continue
                if ti.isreg():
                    with open(snapshot.resolve(image_path), "rb") as f:
                        tar.addfile(ti, f)
                else:
                    tar.addfile(ti)
        os.replace(tmp, path)
    finally:
        if tmp.exists():
            tmp.unlink()
    return sha256_file(path)


def image_config(
    snapshot: Snapshot,
    *,
    image: str,
    version: str,
    repository: str,
    tar_sha256: str,
    source_date_epoch: int = 0,
) -> Dict[str, Any]:
    cfg = snapshot.config
    labels = dict(cfg.get("labels") or {})
    labels[VERSION_LABEL] = version
    env = cfg.get("env") or {}
    return {
        "image": image,
        "tag": f"{repository}/{image}:{version}",
        "created": datetime.fromtimestamp(int(source_date_epoch), tz=timezone.utc).isoformat(),
        "config": {
            "Entrypoint": cfg.get("entrypoint"),
            "Cmd": cfg.get("cmd"),
            "Env": [f"{k}={env[k]}" for k in sorted(env)],
            "Labels": {k: labels[k] for k in sorted(labels)},
        },
        "rootfs": {"type": "layers", "diff_ids": [f"sha256:{tar_sha256}"]},
    }


def export_image(
    snapshot: Snapshot,
    *,
    image: str,
    output_dir: Path,
    version: str,
    repository: str = "kea",
    source_date_epoch: int = 0,
) -> ExportedImage:
    """
    Exporta um snapshot terminal para `<output_dir>/<image>.tar|.json`.

    Raises:
        LinkerCacheStaleError: Se as bibliotecas do snapshot mudaram depois
            do último refresh do cache do linker.
    """
    if snapshot.ldcache_is_stale():
        raise LinkerCacheStaleError(
            message=f"linker cache is stale in '{snapshot.stage_id}'",
            details={"stage": snapshot.stage_id, "dirs": list(snapshot.meta.get("ldcache", {}).get("dirs") or [])},
            hint="Regenere o cache do linker depois de adicionar ou remover bibliotecas.",
        )

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    tar_path = output_dir / f"{image}.tar"
    config_path = output_dir / f"{image}.json"

    tar_sha256 = write_rootfs_tar(snapshot, tar_path, mtime=source_date_epoch)
    config = image_config(
        snapshot,
        image=image,
        version=version,
        repository=repository,
        tar_sha256=tar_sha256,
        source_date_epoch=source_date_epoch,
    )
    tmp = config_path.with_name(config_path.name + ".tmp")
    tmp.write_text(json.dumps(config, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    os.replace(tmp, config_path)

    return ExportedImage(
        name=image,
        stage_id=snapshot.stage_id,
        tar_path=tar_path,
        config_path=config_path,
        tar_sha256=tar_sha256,
        config_sha256=sha256_file(config_path),
        config=config,
    )


def docker_changes(config: Dict[str, Any]) -> List[str]:
    """Instruções `--change` equivalentes à config da imagem (para `docker import`)."""
    c = config.get("config") or {}
    changes: List[str] = []
    for item in c.get("Env") or []:
        key, _, value = item.partition("=")
        changes.append(f"ENV {key}={value}")
    for key, value in sorted((c.get("Labels") or {}).items()):
        changes.append(f"LABEL {key}={json.dumps(value)}")
    if c.get("Entrypoint") is not None:
        changes.append(f"ENTRYPOINT {json.dumps(c['Entrypoint'])}")
    if c.get("Cmd") is not None:
        changes.append(f"CMD {json.dumps(c['Cmd'])}")
    return changes


def load_command(base: List[str], exported: ExportedImage) -> List[str]:
    """Linha de comando que importa a imagem no daemon local (ex.: `docker import`)."""
    args = list(base)
    for change in docker_changes(exported.config):
        args.extend(["--change", change])
    args.extend([str(exported.tar_path), exported.config["tag"]])
    return args
