# src/kea_images/toolchain/runner.py
"""
Execução de ferramentas externas (gpg, configure, make, strip, ldconfig,
instalador de pacotes).

Todas as chamadas passam por um `CommandRunner` injetado no RunContext, o
que permite substituir o toolchain real por um simulado nos testes.

Regras:
    - Nunca usa shell (`shell=False`); argumentos são sempre listas.
    - O código de saída é retornado, nunca interpretado aqui: cada Stage
      decide qual exceção tipada levantar.
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple


@dataclass(frozen=True)
class CommandResult:
    args: Tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def tail(self, lines: int = 20) -> str:
        """Últimas linhas de stderr (ou stdout, se stderr estiver vazio)."""
        text = self.stderr.strip() or self.stdout.strip()
        return "\n".join(text.splitlines()[-lines:])


class CommandRunner:
    """Runner real baseado em `subprocess.run`."""

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> CommandResult:
        argv = [str(a) for a in args]
        try:
            p = subprocess.run(
                argv,
                cwd=str(cwd) if cwd is not None else None,
                env={**os.environ, **dict(env)} if env else None,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except FileNotFoundError as e:
            return CommandResult(args=tuple(argv), returncode=127, stderr=str(e))
        return CommandResult(
            args=tuple(argv),
            returncode=p.returncode,
            stdout=p.stdout or "",
            stderr=p.stderr or "",
        )


def render_command(template: Sequence[str], **values: Any) -> List[str]:
    """
    Expande placeholders de um comando configurado.

    Um elemento que é exatamente `{nome}` com valor lista é expandido em
    vários argumentos (ex.: `{packages}`); os demais passam por `str.format`.

    >>> render_command(["apk", "--root", "{root}", "add", "{packages}"], root="/r", packages=["a", "b"])
    ['apk', '--root', '/r', 'add', 'a', 'b']
    """
    out: List[str] = []
    for item in template:
        item = str(item)
        key = item[1:-1] if item.startswith("{") and item.endswith("}") else None
        if key is not None and isinstance(values.get(key), (list, tuple)):
            out.extend(str(v) for v in values[key])
        else:
            out.append(item.format(**{k: v for k, v in values.items() if not isinstance(v, (list, tuple))}))
    return out


def tool_env(**extra: str) -> Dict[str, str]:
    """Ambiente determinístico mínimo para ferramentas do toolchain."""
    env = {"LC_ALL": "C", "TZ": "UTC"}
    env.update(extra)
    return env
