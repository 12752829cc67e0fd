# src/kea_images/fs/snapshot.py
"""
Snapshots de filesystem por Stage.

Cada Stage produz um snapshot isolado em `<work_dir>/stages/<stage_id>/`:

    rootfs/          árvore de arquivos da imagem (caminhos POSIX absolutos
                     da imagem são resolvidos relativos a este diretório)
    snapshot.json    sidecar com metadados que o filesystem do host não
                     guarda de forma reprodutível:
                       - owners: caminho → [uid, gid]
                       - modes: caminho → modo explícito
                       - config: entrypoint, cmd, env, labels da imagem
                       - ldcache: fingerprint das libs no último refresh
                       - sealed: snapshot imutável após sucesso do Stage

Regras:
    - Um snapshot derivado começa como cópia integral do snapshot base.
    - Dados só passam entre Stages por `SnapshotStore.copy` (cópia explícita).
    - Copiar de um caminho inexistente levanta MissingArtifactError.
    - Após `seal()`, qualquer mutação via API levanta EngineExecutionError.
    - Só snapshots selados podem ser lidos por outros Stages.
"""

from __future__ import annotations

import hashlib
import json
import os
import posixpath
import shutil
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from kea_images.core.exceptions import EngineExecutionError, MissingArtifactError


SIDECAR = "snapshot.json"


def sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()


def normalize_image_path(path: str) -> str:
    """Normaliza um caminho da imagem para forma POSIX absoluta, sem `..` escapando da raiz."""
    if not isinstance(path, str) or not path:
        raise ValueError("image path must be a non-empty string")
    depth = 0
    for part in path.split("/"):
        if part == "..":
            depth -= 1
            if depth < 0:
                raise ValueError(f"path escapes snapshot root: {path}")
        elif part and part != ".":
            depth += 1
    return posixpath.normpath("/" + path.lstrip("/"))


def _empty_meta(stage_id: str, base: Optional[str]) -> Dict[str, Any]:
    return {
        "stage_id": stage_id,
        "base": base,
        "sealed": False,
        "owners": {},
        "modes": {},
        "config": {"entrypoint": None, "cmd": None, "env": {}, "labels": {}},
        "ldcache": {"fingerprint": None, "dirs": []},
    }


class Snapshot:
    """Snapshot de filesystem de um Stage (rootfs + sidecar JSON)."""

    def __init__(self, stage_id: str, root: Path, meta: Dict[str, Any]):
        self.stage_id = stage_id
        self.root = Path(root)
        self.rootfs = self.root / "rootfs"
        self.meta = meta

    # ------------------------------------------------------------------
    # Estado
    # ------------------------------------------------------------------
    @property
    def sealed(self) -> bool:
        return bool(self.meta.get("sealed"))

    @property
    def base(self) -> Optional[str]:
        return self.meta.get("base")

    def _check_writable(self) -> None:
        if self.sealed:
            raise EngineExecutionError(
                message=f"snapshot '{self.stage_id}' is sealed",
                details={"stage": self.stage_id},
                hint="Snapshots são imutáveis após o sucesso do Stage que os produziu.",
            )

    def save_meta(self) -> None:
        path = self.root / SIDECAR
        tmp = path.with_name(SIDECAR + ".tmp")
        tmp.write_text(json.dumps(self.meta, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp, path)

    def seal(self) -> str:
        """Sela o snapshot e retorna seu digest de conteúdo."""
        self._check_writable()
        digest = self.digest()
        self.meta["sealed"] = True
        self.meta["digest"] = digest
        self.save_meta()
        return digest

    # ------------------------------------------------------------------
    # Caminhos
    # ------------------------------------------------------------------
    def resolve(self, path: str) -> Path:
        """Caminho do host correspondente a um caminho absoluto da imagem."""
        norm = normalize_image_path(path)
        if norm == "/":
            return self.rootfs
        return self.rootfs / norm.lstrip("/")

    def exists(self, path: str) -> bool:
        return os.path.lexists(self.resolve(path))

    def is_dir(self, path: str) -> bool:
        return self.resolve(path).is_dir()

    def listdir(self, path: str) -> List[str]:
        target = self.resolve(path)
        if not target.is_dir():
            return []
        return sorted(p.name for p in target.iterdir())

    def walk(self, path: str = "/") -> Iterator[str]:
        """Caminhos da imagem sob `path`, em ordem lexicográfica estável (pais antes de filhos)."""
        top = self.resolve(path)
        if not top.exists():
            return
        base = normalize_image_path(path)
        stack: List[Tuple[str, Path]] = [(base, top)]
        while stack:
            image_path, host = stack.pop()
            if image_path != base or base != "/":
                yield image_path
            if host.is_dir() and not host.is_symlink():
                children = sorted(host.iterdir(), key=lambda p: p.name, reverse=True)
                for child in children:
                    stack.append((posixpath.join(image_path, child.name), child))

    # ------------------------------------------------------------------
    # Mutação (somente antes de seal)
    # ------------------------------------------------------------------
    def mkdir(self, path: str, *, owner: Optional[Tuple[int, int]] = None, mode: Optional[int] = None) -> None:
        self._check_writable()
        self.resolve(path).mkdir(parents=True, exist_ok=True)
        if owner is not None:
            self.chown(path, *owner)
        if mode is not None:
            self.chmod(path, mode)

    def write_bytes(self, path: str, data: bytes, *, mode: Optional[int] = None) -> None:
        self._check_writable()
        target = self.resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        if mode is not None:
            self.chmod(path, mode)

    def write_text(self, path: str, text: str, *, mode: Optional[int] = None) -> None:
        self.write_bytes(path, text.encode("utf-8"), mode=mode)

    def read_text(self, path: str) -> str:
        target = self.resolve(path)
        if not target.exists():
            raise MissingArtifactError(
                message=f"path not found in snapshot '{self.stage_id}': {path}",
                details={"stage": self.stage_id, "path": path},
            )
        return target.read_text(encoding="utf-8")

    def chown(self, path: str, uid: int, gid: int) -> None:
        """Registra dono numérico (aplicado no export; o host não é alterado)."""
        self._check_writable()
        self.meta["owners"][normalize_image_path(path)] = [int(uid), int(gid)]

    def chmod(self, path: str, mode: int) -> None:
        self._check_writable()
        norm = normalize_image_path(path)
        self.meta["modes"][norm] = int(mode) & 0o7777
        os.chmod(self.resolve(norm), int(mode) & 0o777 | 0o200)

    def owner_of(self, path: str) -> Tuple[int, int]:
        value = self.meta.get("owners", {}).get(normalize_image_path(path))
        if not value:
            return 0, 0
        return int(value[0]), int(value[1])

    def mode_of(self, path: str) -> Optional[int]:
        value = self.meta.get("modes", {}).get(normalize_image_path(path))
        return int(value) if value is not None else None

    def remove(self, path: str) -> None:
        self._check_writable()
        target = self.resolve(path)
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
        elif os.path.lexists(target):
            target.unlink()
        self._forget(normalize_image_path(path))

    def move(self, src: str, dst: str) -> None:
        """Move um caminho dentro do próprio snapshot, levando metadados junto."""
        self._check_writable()
        source = self.resolve(src)
        if not os.path.lexists(source):
            raise MissingArtifactError(
                message=f"path not found in snapshot '{self.stage_id}': {src}",
                details={"stage": self.stage_id, "path": src},
            )
        target = self.resolve(dst)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(source), str(target))
        self._remap(normalize_image_path(src), normalize_image_path(dst))

    def set_config(
        self,
        *,
        entrypoint: Any = ...,
        cmd: Any = ...,
        env: Optional[Dict[str, str]] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        """Atualiza a config da imagem. `...` mantém o valor atual; `None` limpa."""
        self._check_writable()
        config = self.meta["config"]
        if entrypoint is not ...:
            config["entrypoint"] = list(entrypoint) if entrypoint is not None else None
        if cmd is not ...:
            config["cmd"] = list(cmd) if cmd is not None else None
        if env:
            config["env"].update({str(k): str(v) for k, v in env.items()})
        if labels:
            config["labels"].update({str(k): str(v) for k, v in labels.items()})

    @property
    def config(self) -> Dict[str, Any]:
        return self.meta["config"]

    # ------------------------------------------------------------------
    # Cache do linker
    # ------------------------------------------------------------------
    def library_fingerprint(self, dirs: Iterable[str]) -> str:
        """Digest do conteúdo (nomes + bytes) dos diretórios de bibliotecas."""
        h = hashlib.sha256()
        for d in sorted(set(dirs)):
            for image_path in self.walk(d):
                host = self.resolve(image_path)
                h.update(image_path.encode("utf-8") + b"\0")
                if host.is_symlink():
                    h.update(b"L" + os.readlink(host).encode("utf-8"))
                elif host.is_file():
                    h.update(b"F" + sha256_file(host).encode("ascii"))
                else:
                    h.update(b"D")
        return h.hexdigest()

    def record_ldcache(self, dirs: Iterable[str]) -> str:
        self._check_writable()
        dir_list = sorted(set(dirs))
        fingerprint = self.library_fingerprint(dir_list)
        self.meta["ldcache"] = {"fingerprint": fingerprint, "dirs": dir_list}
        return fingerprint

    def ldcache_is_stale(self) -> bool:
        """True quando as libs mudaram depois do último refresh do cache do linker."""
        ld = self.meta.get("ldcache") or {}
        recorded = ld.get("fingerprint")
        if recorded is None:
            return False
        return self.library_fingerprint(ld.get("dirs") or []) != recorded

    # ------------------------------------------------------------------
    # Digest
    # ------------------------------------------------------------------
    def digest(self) -> str:
        """Digest determinístico do conteúdo + metadados de imagem."""
        h = hashlib.sha256()
        for image_path in self.walk("/"):
            host = self.resolve(image_path)
            uid, gid = self.owner_of(image_path)
            h.update(f"{image_path}\0{uid}:{gid}\0".encode("utf-8"))
            if host.is_symlink():
                h.update(b"L" + os.readlink(host).encode("utf-8"))
            elif host.is_file():
                h.update(b"F" + sha256_file(host).encode("ascii"))
            else:
                h.update(b"D")
        h.update(json.dumps(self.meta.get("config"), sort_keys=True).encode("utf-8"))
        return h.hexdigest()

    # ------------------------------------------------------------------
    # Metadados por caminho
    # ------------------------------------------------------------------
    def _forget(self, path: str) -> None:
        prefix = path.rstrip("/") + "/"
        for key in ("owners", "modes"):
            table = self.meta.get(key, {})
            for p in [p for p in table if p == path or p.startswith(prefix)]:
                del table[p]

    def _remap(self, src: str, dst: str) -> None:
        prefix = src.rstrip("/") + "/"
        for key in ("owners", "modes"):
            table = self.meta.get(key, {})
            moved = {p: v for p, v in table.items() if p == src or p.startswith(prefix)}
            for p, v in moved.items():
                del table[p]
                table[dst + p[len(src):]] = v


class SnapshotStore:
    """Store de snapshots de uma run (`<work_dir>/stages`)."""

    def __init__(self, work_dir: Path):
        self.work_dir = Path(work_dir)
        self.stages_dir = self.work_dir / "stages"
        self._snapshots: Dict[str, Snapshot] = {}
        self._lock = threading.Lock()

    def create(self, stage_id: str, base: Optional[Snapshot] = None) -> Snapshot:
        """
        Cria o snapshot de um Stage (descartando qualquer resto de run anterior).

        Com `base`, o rootfs e os metadados do base são copiados por inteiro.
        """
        if base is not None and not base.sealed:
            raise EngineExecutionError(
                message=f"base snapshot '{base.stage_id}' is not sealed",
                details={"stage": stage_id, "base": base.stage_id},
            )
        root = self.stages_dir / stage_id
        if root.exists():
            shutil.rmtree(root)
        root.mkdir(parents=True)

        if base is None:
            (root / "rootfs").mkdir()
            meta = _empty_meta(stage_id, None)
        else:
            shutil.copytree(base.rootfs, root / "rootfs", symlinks=True)
            meta = json.loads(json.dumps(base.meta))
            meta.update({"stage_id": stage_id, "base": base.stage_id, "sealed": False})
            meta.pop("digest", None)

        snap = Snapshot(stage_id, root, meta)
        snap.save_meta()
        with self._lock:
            self._snapshots[stage_id] = snap
        return snap

    def get(self, stage_id: str) -> Snapshot:
        """
        Snapshot selado de um Stage concluído nesta run.

        Snapshots deixados em disco por runs anteriores nunca são reaproveitados.
        """
        with self._lock:
            snap = self._snapshots.get(stage_id)
        if snap is None or not snap.sealed:
            raise MissingArtifactError(
                message=f"no sealed snapshot for stage '{stage_id}'",
                details={"stage": stage_id},
                hint="O Stage upstream não concluiu com sucesso nesta run.",
            )
        return snap

    def copy(self, src: Snapshot, src_path: str, dst: Snapshot, dst_path: str) -> None:
        """
        Copia `src:src_path` para `dst:dst_path` (arquivo ou árvore).

        Metadados (dono e modo) dos caminhos copiados acompanham a cópia.

        Raises:
            MissingArtifactError: Se `src_path` não existir no snapshot de origem.
        """
        dst._check_writable()
        source = src.resolve(src_path)
        if not os.path.lexists(source):
            raise MissingArtifactError(
                message=f"{src_path} not found in snapshot '{src.stage_id}'",
                details={"stage": src.stage_id, "path": src_path, "required_by": dst.stage_id},
                hint="Corrija a definição do build: o caminho referenciado não existe no snapshot upstream.",
            )
        target = dst.resolve(dst_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        if source.is_dir() and not source.is_symlink():
            shutil.copytree(source, target, symlinks=True, dirs_exist_ok=True)
        else:
            if os.path.lexists(target) and not target.is_dir():
                target.unlink()
            shutil.copy2(source, target, follow_symlinks=False)

        src_norm = normalize_image_path(src_path)
        dst_norm = normalize_image_path(dst_path)
        prefix = src_norm.rstrip("/") + "/"
        for key in ("owners", "modes"):
            for p, v in src.meta.get(key, {}).items():
                if p == src_norm or p.startswith(prefix):
                    dst.meta[key][dst_norm + p[len(src_norm):]] = v
