# src/kea_images/core/pipeline/context.py
"""
Contexto de execução compartilhado do grafo de build.

Este módulo define o `RunContext`, a estrutura canônica passada a todos
os Stages durante uma execução do pipeline de imagens.

O RunContext atua como o único meio permitido de:
    - acessar a versão de origem e a configuração resolvida
    - acessar o store de snapshots (dados entre Stages)
    - invocar ferramentas externas via CommandRunner
    - registrar logs estruturados de execução
    - coletar warnings não fatais associados a Stages

Princípios fundamentais:
    - Isolamento por execução (cada run possui seu próprio contexto)
    - Comunicação entre Stages apenas por cópias explícitas de snapshots
    - Ausência de estado global compartilhado

Invariantes:
    - Logs sempre incluem `run_id` e `stage_id`
    - Warnings são agrupados por `stage_id`
    - `version` é imutável durante a execução

Limites explícitos:
    - Não executa Stages
    - Não planeja nem coordena execução
    - Não persiste dados automaticamente

Todo evento de `log` também é emitido no logger `kea_images.run`
(`logging` da stdlib), com `run_id` e `stage_id` no LogRecord.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


logger = logging.getLogger("kea_images.run")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass
class RunContext:
    """
    Contexto de execução compartilhado de uma run do pipeline.

    Campos canônicos:
        - run_id: identificador único da execução
        - created_at: timestamp UTC de criação do contexto
        - config: configuração efetiva (defaults + local deep-merge)
        - version: versão do release de origem (único input externo)
        - catalog: BuildCatalog resolvido a partir da config
        - snapshots: SnapshotStore da execução
        - runner: CommandRunner usado para ferramentas externas
        - manifest: BuildManifest opcional, atualizado pelo Engine
        - meta: metadados de execução (ex.: work_dir, output_dir)
        - events: log estruturado de eventos
        - warnings: warnings por stage_id

    Decisões arquiteturais:
        - Colaboradores externos (runner, fetch) são injetados, nunca globais
        - Log e warnings são protegidos por lock (Stages podem rodar em paralelo)
    """
    run_id: str
    created_at: datetime
    config: Dict[str, Any]
    version: str
    catalog: Any = None
    snapshots: Any = None
    runner: Any = None
    manifest: Any = None
    meta: Dict[str, Any] = field(default_factory=dict)

    events: List[Dict[str, Any]] = field(default_factory=list, init=False)
    warnings: Dict[str, List[str]] = field(default_factory=dict, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    # -----------------------------
    # Logging & warnings
    # -----------------------------
    def log(self, *, stage_id: str, level: str, message: str, **extra: Any) -> None:
        event = {
            "run_id": self.run_id,
            "stage_id": stage_id,
            "level": level,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        event.update(extra)
        with self._lock:
            self.events.append(event)

        details = " ".join(f"{k}={v}" for k, v in sorted(extra.items()))
        logger.log(
            _LEVELS.get(level.lower(), logging.INFO),
            "%s: %s%s",
            stage_id,
            message,
            f" ({details})" if details else "",
            extra={"run_id": self.run_id, "stage_id": stage_id},
        )

    def add_warning(self, *, stage_id: str, message: str) -> None:
        with self._lock:
            self.warnings.setdefault(stage_id, []).append(message)
        logger.warning("%s: %s", stage_id, message, extra={"run_id": self.run_id, "stage_id": stage_id})

    def stage_config(self, stage_id: str) -> Dict[str, Any]:
        stages_cfg = (self.config or {}).get("stages", {}) or {}
        return dict(stages_cfg.get(stage_id, {}) or {})

    def section(self, name: str) -> Dict[str, Any]:
        """Retorna uma seção de primeiro nível da config (dict vazio se ausente)."""
        value = (self.config or {}).get(name)
        return dict(value) if isinstance(value, dict) else {}

    def meta_value(self, key: str, default: Optional[Any] = None) -> Any:
        return self.meta.get(key, default)
