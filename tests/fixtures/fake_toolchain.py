# tests/fixtures/fake_toolchain.py
"""
Toolchain simulado para testes do grafo de build.

O `FakeRunner` substitui o `CommandRunner` real e reproduz, de forma
determinística e sem dependências externas, os efeitos observáveis das
ferramentas usadas pelos Stages:

- gpg --import / --verify (assinatura falsa = sha256 do archive)
- ./configure, make, make install (gera uma árvore de staging com
  executáveis e bibliotecas "ELF" contendo seção de debug)
- strip (remove a seção de debug)
- ldconfig -r <root> (grava um cache listando as libs)
- apk --root <root> add ... (registra pacotes instalados)
- docker import (apenas registrado)

`make_release` materializa um espelho local de release (archive,
assinatura destacada, chave do publicador e o minirootfs da camada base).
"""

from __future__ import annotations

import gzip
import hashlib
import io
import tarfile
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Set

from kea_images.toolchain.runner import CommandResult


DEBUG_MARKER = b"\n.debug_info"
DEBUG_PADDING = b"\0" * 512
KEY_NAME = "isc-keyblock.asc"

EXECUTABLES = (
    "kea-ctrl-agent",
    "kea-dhcp-ddns",
    "kea-dhcp4",
    "kea-dhcp6",
    "kea-lfc",
    "keactrl",
)

LIBRARIES = ("libkea-asiolink", "libkea-dhcpsrv", "libkea-hooks", "libkea-util")

HOOK_MODULES = (
    "libddns_gss_tsig.so",
    "libdhcp_bootp.so",
    "libdhcp_flex_option.so",
    "libdhcp_ha.so",
    "libdhcp_lease_cmds.so",
    "libdhcp_mysql_cb.so",
    "libdhcp_perfmon.so",
    "libdhcp_pgsql_cb.so",
    "libdhcp_run_script.so",
    "libdhcp_stat_cmds.so",
)


def fake_elf(name: str) -> bytes:
    return b"\x7fELF" + name.encode("utf-8") + DEBUG_MARKER + DEBUG_PADDING


def fake_signature(archive: bytes) -> bytes:
    return b"FAKESIG " + hashlib.sha256(archive).hexdigest().encode("ascii") + b"\n"


BASE_ROOTFS_NAME = "alpine-minirootfs-3.18.4-x86_64.tar.gz"

BASE_ROOTFS_FILES = (
    ("bin/busybox", fake_elf("busybox"), 0o755),
    ("lib/ld-musl-x86_64.so.1", fake_elf("ld-musl"), 0o755),
    ("etc/passwd", b"root:x:0:0:root:/root:/bin/sh\n", 0o644),
    ("etc/group", b"root:x:0:root\n", 0o644),
    ("etc/alpine-release", b"3.18.4\n", 0o644),
)
BASE_ROOTFS_LINKS = (
    ("bin/sh", "/bin/busybox"),
    ("bin/ls", "/bin/busybox"),
    ("lib/libc.musl-x86_64.so.1", "ld-musl-x86_64.so.1"),
)


def make_base_rootfs() -> bytes:
    """Minirootfs determinístico (gzip sem timestamp), com symlinks absolutos."""
    raw = io.BytesIO()
    with tarfile.open(fileobj=raw, mode="w") as tf:
        for name in ("bin", "etc", "lib"):
            ti = tarfile.TarInfo(name)
            ti.type = tarfile.DIRTYPE
            ti.mode = 0o755
            tf.addfile(ti)
        for name, data, mode in BASE_ROOTFS_FILES:
            ti = tarfile.TarInfo(name)
            ti.size = len(data)
            ti.mode = mode
            tf.addfile(ti, io.BytesIO(data))
        for name, target in BASE_ROOTFS_LINKS:
            ti = tarfile.TarInfo(name)
            ti.type = tarfile.SYMTYPE
            ti.linkname = target
            ti.mode = 0o777
            tf.addfile(ti)
    out = io.BytesIO()
    with gzip.GzipFile(fileobj=out, mode="wb", mtime=0) as gz:
        gz.write(raw.getvalue())
    return out.getvalue()


def base_rootfs_sha256() -> str:
    return hashlib.sha256(make_base_rootfs()).hexdigest()


def make_release(mirror_dir: Path, version: str, *, corrupt_signature: bool = False) -> Path:
    """Cria archive + assinatura + chave + rootfs base em `mirror_dir` e retorna o diretório."""
    mirror_dir = Path(mirror_dir)
    mirror_dir.mkdir(parents=True, exist_ok=True)

    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        for name, data in (
            (f"kea-{version}/configure", b"#!/bin/sh\nexit 0\n"),
            (f"kea-{version}/Makefile.in", b"all:\n"),
            (f"kea-{version}/README", b"Kea DHCP\n"),
        ):
            ti = tarfile.TarInfo(name)
            ti.size = len(data)
            ti.mode = 0o755 if name.endswith("configure") else 0o644
            ti.mtime = 0
            tf.addfile(ti, io.BytesIO(data))
    archive = buf.getvalue()

    (mirror_dir / f"kea-{version}.tar.gz").write_bytes(archive)
    signature = fake_signature(archive)
    if corrupt_signature:
        signature = b"FAKESIG " + b"0" * 64 + b"\n"
    (mirror_dir / f"kea-{version}.tar.gz.asc").write_bytes(signature)
    (mirror_dir / KEY_NAME).write_text("-----BEGIN PGP PUBLIC KEY BLOCK-----\nfake\n", encoding="utf-8")
    (mirror_dir / BASE_ROOTFS_NAME).write_bytes(make_base_rootfs())
    return mirror_dir


class FakeRunner:
    """Runner determinístico que simula o toolchain do build."""

    def __init__(
        self,
        *,
        omit_hooks: Iterable[str] = (),
        fail: Iterable[str] = (),
        prefix: str = "/usr/local",
    ):
        self.omit_hooks: Set[str] = set(omit_hooks)
        self.fail: Set[str] = set(fail)
        self.prefix = prefix
        self.calls: List[List[str]] = []

    def commands(self, name: str) -> List[List[str]]:
        return [c for c in self.calls if Path(c[0]).name == name]

    def run(self, args: Sequence[str], *, cwd: Optional[Path] = None, env=None) -> CommandResult:
        argv = [str(a) for a in args]
        self.calls.append(argv)
        tool = Path(argv[0]).name
        key = "make install" if tool == "make" and "install" in argv else tool
        if key in self.fail or tool in self.fail:
            return CommandResult(args=tuple(argv), returncode=2, stderr=f"{key}: simulated failure\n")

        handler = {
            "gpg": self._gpg,
            "configure": self._configure,
            "make": self._make,
            "strip": self._strip,
            "ldconfig": self._ldconfig,
            "apk": self._apk,
            "docker": self._ok,
        }.get(tool, self._unknown)
        return handler(argv, Path(cwd) if cwd is not None else None)

    # ------------------------------------------------------------------
    def _ok(self, argv, cwd) -> CommandResult:
        return CommandResult(args=tuple(argv), returncode=0)

    def _unknown(self, argv, cwd) -> CommandResult:
        return CommandResult(args=tuple(argv), returncode=127, stderr=f"{argv[0]}: not found\n")

    def _gpg(self, argv, cwd) -> CommandResult:
        if "--import" in argv:
            key = Path(argv[argv.index("--import") + 1])
            if "PUBLIC KEY" not in key.read_text(encoding="utf-8"):
                return CommandResult(args=tuple(argv), returncode=2, stderr="gpg: no valid OpenPGP data found.\n")
            return CommandResult(args=tuple(argv), returncode=0)
        if "--verify" in argv:
            i = argv.index("--verify")
            signature, archive = Path(argv[i + 1]), Path(argv[i + 2])
            if signature.read_bytes() != fake_signature(archive.read_bytes()):
                return CommandResult(args=tuple(argv), returncode=1, stderr="gpg: BAD signature\n")
            return CommandResult(args=tuple(argv), returncode=0, stderr="gpg: Good signature\n")
        return self._unknown(argv, cwd)

    def _configure(self, argv, cwd) -> CommandResult:
        (cwd / "config.status").write_text(" ".join(argv[1:]) + "\n", encoding="utf-8")
        return CommandResult(args=tuple(argv), returncode=0)

    def _make(self, argv, cwd) -> CommandResult:
        if not (cwd / "config.status").exists():
            return CommandResult(args=tuple(argv), returncode=2, stderr="make: *** No targets specified\n")
        if "install" not in argv:
            (cwd / "build.stamp").write_text("built\n", encoding="utf-8")
            return CommandResult(args=tuple(argv), returncode=0)
        if not (cwd / "build.stamp").exists():
            return CommandResult(args=tuple(argv), returncode=2, stderr="make: nothing built\n")
        destdir = next(a.split("=", 1)[1] for a in argv if a.startswith("DESTDIR="))
        self._install_tree(Path(destdir) / self.prefix.lstrip("/"))
        return CommandResult(args=tuple(argv), returncode=0)

    def _install_tree(self, root: Path) -> None:
        sbin = root / "sbin"
        lib = root / "lib"
        hooks = lib / "kea" / "hooks"
        include = root / "include" / "kea"
        for d in (sbin, hooks, include, root / "share" / "kea"):
            d.mkdir(parents=True, exist_ok=True)

        for exe in EXECUTABLES:
            path = sbin / exe
            path.write_bytes(fake_elf(exe))
            path.chmod(0o755)
        for name in LIBRARIES:
            real = lib / f"{name}.so.1.0.0"
            real.write_bytes(fake_elf(real.name))
            (lib / f"{name}.so.1").symlink_to(real.name)
            (lib / f"{name}.so").symlink_to(real.name)
            (lib / f"{name}.la").write_text(f"dlname='{name}.so.1'\n", encoding="utf-8")
        for module in HOOK_MODULES:
            if module in self.omit_hooks:
                continue
            (hooks / module).write_bytes(fake_elf(module))
            (hooks / module.replace(".so", ".la")).write_text(f"dlname='{module}'\n", encoding="utf-8")
        (include / "version.h").write_text("#define KEA_VERSION 1\n", encoding="utf-8")
        (root / "share" / "kea" / "README").write_text("docs\n", encoding="utf-8")

    def _strip(self, argv, cwd) -> CommandResult:
        path = Path(argv[-1])
        data = path.read_bytes()
        path.write_bytes(data.split(DEBUG_MARKER, 1)[0])
        return CommandResult(args=tuple(argv), returncode=0)

    def _ldconfig(self, argv, cwd) -> CommandResult:
        root = Path(argv[argv.index("-r") + 1])
        lib = root / self.prefix.lstrip("/") / "lib"
        names = sorted(str(p.relative_to(root)) for p in lib.rglob("*.so*")) if lib.exists() else []
        cache = root / "etc" / "ld.so.cache"
        cache.parent.mkdir(parents=True, exist_ok=True)
        cache.write_text("".join(f"/{n}\n" for n in names), encoding="utf-8")
        return CommandResult(args=tuple(argv), returncode=0)

    def _apk(self, argv, cwd) -> CommandResult:
        root = Path(argv[argv.index("--root") + 1])
        packages = argv[argv.index("add") + 1:]
        db = root / "lib" / "apk" / "db" / "installed"
        db.parent.mkdir(parents=True, exist_ok=True)
        db.write_text("".join(f"P:{p}\n" for p in sorted(packages)), encoding="utf-8")
        return CommandResult(args=tuple(argv), returncode=0)
