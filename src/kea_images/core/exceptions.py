"""
kea-images: Canonical Exceptions (v1)

Exceções tipadas levantadas por Stages e pelo Engine.

Objetivo:
- Permitir que Stages sinalizem falhas semânticas tipadas
- Facilitar o mapeamento determinístico para BuildErrorPayload
- Evitar RuntimeError genéricos nos pontos críticos do grafo

Regras:
- Exceções carregam apenas dados estruturados (serializáveis) em `details`.
- Toda exceção aqui é fatal para o Stage que a levanta.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .errors import (
    COMPILATION_FAILED,
    ENGINE_CONFIGURATION_ERROR,
    ENGINE_EXECUTION_ERROR,
    LINKER_CACHE_STALE,
    MISSING_ARTIFACT,
    SOURCE_VERIFICATION_FAILED,
)


@dataclass(frozen=True)
class KeaBuildException(Exception):
    """Base class para exceções internas do build.

    Importante:
    - Sempre carregar dados estruturados em `details`
    - Mensagem deve ser curta e humana
    """

    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    hint: Optional[str] = None

    code = ENGINE_EXECUTION_ERROR

    def __str__(self) -> str:  # pragma: no cover
        return self.message


@dataclass(frozen=True)
class VerificationError(KeaBuildException):
    """Arquivo de origem ausente, importação de chave ou assinatura inválida."""

    code = SOURCE_VERIFICATION_FAILED


@dataclass(frozen=True)
class CompilationError(KeaBuildException):
    """configure/make/make install terminou com código não-zero."""

    code = COMPILATION_FAILED


@dataclass(frozen=True)
class MissingArtifactError(KeaBuildException):
    """Um Stage referenciou um caminho inexistente em um snapshot upstream."""

    code = MISSING_ARTIFACT


@dataclass(frozen=True)
class LinkerCacheStaleError(KeaBuildException):
    """Bibliotecas mudaram depois da última regeneração do cache do linker."""

    code = LINKER_CACHE_STALE


@dataclass(frozen=True)
class EngineConfigurationError(KeaBuildException):
    """Configuração inválida ou inconsistente para execução."""

    code = ENGINE_CONFIGURATION_ERROR


@dataclass(frozen=True)
class EngineExecutionError(KeaBuildException):
    """Erro inesperado durante execução do Engine (encapsulado)."""
