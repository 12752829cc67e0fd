# src/kea_images/toolchain/gpg.py
"""
Verificação OpenPGP de assinaturas destacadas via `gpg`.

A chave do publicador é importada em um keyring isolado (`GNUPGHOME`
privado ao Stage), de modo que o keyring do operador nunca é consultado
nem alterado.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence

from kea_images.core.exceptions import VerificationError

from .runner import CommandRunner, tool_env


class GpgVerifier:
    def __init__(self, runner: CommandRunner, *, homedir: Path, command: Sequence[str] = ("gpg",)):
        self.runner = runner
        self.homedir = Path(homedir)
        self.command: List[str] = list(command)

    def _base(self) -> List[str]:
        return self.command + ["--batch", "--no-tty", "--homedir", str(self.homedir)]

    def import_key(self, key_file: Path) -> None:
        self.homedir.mkdir(parents=True, exist_ok=True)
        self.homedir.chmod(0o700)
        result = self.runner.run(self._base() + ["--import", str(key_file)], env=tool_env(GNUPGHOME=str(self.homedir)))
        if not result.ok:
            raise VerificationError(
                message="publisher key import failed",
                details={"key": Path(key_file).name, "returncode": result.returncode, "stderr_tail": result.tail()},
                hint="Confira o arquivo de chave pública do publicador.",
            )

    def verify(self, signature: Path, archive: Path) -> None:
        result = self.runner.run(
            self._base() + ["--verify", str(signature), str(archive)],
            env=tool_env(GNUPGHOME=str(self.homedir)),
        )
        if not result.ok:
            raise VerificationError(
                message="signature verification failed",
                details={
                    "archive": Path(archive).name,
                    "signature": Path(signature).name,
                    "returncode": result.returncode,
                    "stderr_tail": result.tail(),
                },
                hint="O archive não corresponde à assinatura do publicador. Nunca prossiga sem verificação.",
            )
