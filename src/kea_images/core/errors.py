"""
kea-images: Canonical Error Structures (v1)

Este módulo define o padrão canônico de erros do pipeline de imagens.
Erros fazem parte do contrato operacional do build, devendo ser:

- explícitos
- serializáveis
- rastreáveis
- acionáveis

Nenhuma falha é rebaixada para warning e nenhuma imagem parcial é produzida.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional


# ---------------------------------------------------------------------------
# Payload canônico
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BuildErrorPayload:
    """
    Payload canônico de erro do build.

    Campos:
    - type: código estável do erro (não é texto livre)
    - message: mensagem curta, humana e objetiva
    - details: dados estruturados relevantes para diagnóstico
    - hint: ação sugerida ao operador (onde corrigir)
    """

    type: str
    message: str
    details: Dict[str, Any]
    hint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Catálogo canônico de tipos de erro (v1)
# ---------------------------------------------------------------------------

# Aquisição / verificação
SOURCE_VERIFICATION_FAILED = "SOURCE_VERIFICATION_FAILED"

# Toolchain
COMPILATION_FAILED = "COMPILATION_FAILED"

# Definição do build
MISSING_ARTIFACT = "MISSING_ARTIFACT"
LINKER_CACHE_STALE = "LINKER_CACHE_STALE"

# Engine / Execução
ENGINE_EXECUTION_ERROR = "ENGINE_EXECUTION_ERROR"
ENGINE_CONFIGURATION_ERROR = "ENGINE_CONFIGURATION_ERROR"
