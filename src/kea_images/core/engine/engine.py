# src/kea_images/core/engine/engine.py
"""
Engine de execução do grafo de build do kea-images.

Regras de execução:
- Um Stage só executa quando **todas** as suas dependências terminaram com
  SUCCESS. Caso contrário é SKIPPED ("skipped due to failed dependency"),
  e o bloqueio se propaga transitivamente por todo o subgrafo downstream.
- Exceções levantadas por um Stage viram StageResult FAILED com payload
  estruturado (`payload["error"]`), sem stack trace cru para o operador.
- Sem retry automático. Sem imagem parcial.
- `engine.fail_fast` (default false) interrompe a run na primeira falha;
  desligado, subgrafos irmãos continuam.
- `engine.max_workers` > 1 executa em paralelo os Stages prontos de ramos
  independentes (ondas); a ordem de dependências é preservada.

O Engine **não** muta instâncias de StageResult in-place; enriquecimento
(warnings do RunContext) é feito via `dataclasses.replace`.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Sequence

from kea_images.core.pipeline.context import RunContext
from kea_images.core.pipeline.stage import Stage
from kea_images.core.pipeline.types import StageKind, StageResult, StageStatus
from kea_images.core.errors import (
    BuildErrorPayload,
    ENGINE_CONFIGURATION_ERROR,
    ENGINE_EXECUTION_ERROR,
)
from kea_images.core.exceptions import KeaBuildException
from kea_images.core.traceability import manifest as build_manifest

from .planner import plan_execution


@dataclass(frozen=True)
class RunResult:
    """Resultado agregado de uma execução do grafo (ordem do plano)."""

    stages: Dict[str, StageResult] = field(default_factory=dict)

    def succeeded(self) -> List[str]:
        return [sid for sid, r in self.stages.items() if r.status == StageStatus.SUCCESS]

    def failed(self) -> List[str]:
        return [sid for sid, r in self.stages.items() if r.status == StageStatus.FAILED]


class Engine:
    """Engine canônico do kea-images (planner + executor)."""

    def __init__(self, *, stages: Sequence[Stage], ctx: RunContext):
        self.stages: List[Stage] = list(stages)
        self.ctx: RunContext = ctx
        self._lock = threading.Lock()

    def _engine_cfg(self) -> Dict[str, Any]:
        return (self.ctx.config or {}).get("engine", {}) or {}

    def _is_enabled(self, stage_id: str) -> bool:
        return bool(self.ctx.stage_config(stage_id).get("enabled", True))

    def _fail_fast(self) -> bool:
        return bool(self._engine_cfg().get("fail_fast", False))

    def _max_workers(self) -> int:
        value = self._engine_cfg().get("max_workers", 1)
        try:
            return max(1, int(value or 1))
        except (TypeError, ValueError):
            return 1

    # ------------------------------------------------------------------
    # Guardrails: exceção -> BuildErrorPayload
    # ------------------------------------------------------------------

    def _exception_to_error(self, stage_id: str, exc: Exception) -> BuildErrorPayload:
        """Converte exceções em BuildErrorPayload (serializável, acionável).

        Regras:
        - KeaBuildException: já vem com código, message, details e hint.
        - Outras exceções: encapsular como ENGINE_EXECUTION_ERROR sem stack trace.
        """
        if isinstance(exc, KeaBuildException):
            return BuildErrorPayload(
                type=exc.code,
                message=str(exc) or "Erro de execução",
                details=dict(exc.details or {}),
                hint=exc.hint,
            )

        return BuildErrorPayload(
            type=ENGINE_EXECUTION_ERROR,
            message=str(exc) or "Erro inesperado durante execução",
            details={
                "stage": stage_id,
                "exception_class": exc.__class__.__name__,
            },
            hint="Verifique o log do build e a configuração do grafo",
        )

    # ------------------------------------------------------------------
    # Rastreamento: Manifest + warnings do RunContext
    # ------------------------------------------------------------------

    def _record_started(self, stage: Stage) -> None:
        if self.ctx.manifest is None:
            return
        with self._lock:
            build_manifest.stage_started(
                self.ctx.manifest,
                stage_id=stage.id,
                kind=_kind_value(stage),
                ts=datetime.now(timezone.utc),
            )

    def _record_result(self, result: StageResult) -> None:
        if self.ctx.manifest is None:
            return
        now = datetime.now(timezone.utc)
        with self._lock:
            if result.status == StageStatus.FAILED:
                build_manifest.stage_failed(
                    self.ctx.manifest,
                    stage_id=result.stage_id,
                    ts=now,
                    error=dict(result.payload.get("error") or {"message": result.summary}),
                )
            else:
                build_manifest.stage_finished(
                    self.ctx.manifest,
                    stage_id=result.stage_id,
                    ts=now,
                    result={
                        "status": result.status.value,
                        "summary": result.summary,
                        "metrics": result.metrics,
                        "warnings": result.warnings,
                        "artifacts": result.artifacts,
                    },
                )

    def _enrich(self, *, stage: Stage, result: StageResult) -> StageResult:
        existing = list(result.warnings or [])
        merged: List[str] = []
        for msg in existing + list(self.ctx.warnings.get(stage.id, []) or []):
            if msg not in merged:
                merged.append(msg)
        return replace(result, stage_id=stage.id, kind=result.kind or _kind(stage), warnings=merged)

    def _mk_result(
        self,
        *,
        stage: Stage,
        status: StageStatus,
        summary: str,
        payload: Dict[str, Any] | None = None,
    ) -> StageResult:
        return self._enrich(
            stage=stage,
            result=StageResult(
                stage_id=stage.id,
                kind=_kind(stage),
                status=status,
                summary=summary,
                payload=dict(payload or {}),
            ),
        )

    # ------------------------------------------------------------------
    # Execução
    # ------------------------------------------------------------------

    def _execute(self, stage: Stage, done: Mapping[str, StageResult]) -> StageResult:
        sid = stage.id

        if not self._is_enabled(sid):
            result = self._mk_result(stage=stage, status=StageStatus.SKIPPED, summary="skipped by config")
            self._record_result(result)
            return result

        deps = list(getattr(stage, "depends_on", []) or [])
        blocked = [d for d in deps if d not in done or done[d].status != StageStatus.SUCCESS]
        if blocked:
            result = self._mk_result(
                stage=stage,
                status=StageStatus.SKIPPED,
                summary="skipped due to failed dependency",
                payload={"blocked_by": blocked},
            )
            self._record_result(result)
            return result

        self._record_started(stage)
        self.ctx.log(stage_id=sid, level="info", message="stage started")

        try:
            stage_result = stage.run(self.ctx)
            if not isinstance(stage_result, StageResult):
                raise TypeError("Stage.run(ctx) must return StageResult")
            result = self._enrich(stage=stage, result=stage_result)

        except Exception as e:
            error = self._exception_to_error(sid, e)

            if isinstance(e, TypeError) and "must return StageResult" in (str(e) or ""):
                error = BuildErrorPayload(
                    type=ENGINE_CONFIGURATION_ERROR,
                    message="Stage retornou tipo inválido",
                    details={"stage": sid, "expected": "StageResult"},
                    hint="Ajuste o Stage para retornar StageResult",
                )

            self.ctx.log(
                stage_id=sid,
                level="error",
                message="stage failed",
                error_type=error.type,
                error_message=error.message,
            )
            result = self._mk_result(
                stage=stage,
                status=StageStatus.FAILED,
                summary=error.message,
                payload={"error": error.to_dict()},
            )
        else:
            self.ctx.log(stage_id=sid, level="info", message="stage finished", status=result.status.value)

        self._record_result(result)
        return result

    def run(self) -> RunResult:
        ordered = plan_execution(self.stages)
        results: Dict[str, StageResult] = {}

        if self._max_workers() <= 1:
            for stage in ordered:
                results[stage.id] = self._execute(stage, results)
                if self._fail_fast() and results[stage.id].status == StageStatus.FAILED:
                    break
            return RunResult(stages=results)

        pending = list(ordered)
        with ThreadPoolExecutor(max_workers=self._max_workers()) as pool:
            while pending:
                wave = [s for s in pending if all(d in results for d in (s.depends_on or []))]
                pending = [s for s in pending if s not in wave]
                snapshot = dict(results)
                futures = [(s, pool.submit(self._execute, s, snapshot)) for s in wave]
                for s, fut in futures:
                    results[s.id] = fut.result()
                if self._fail_fast() and any(results[s.id].status == StageStatus.FAILED for s in wave):
                    break

        return RunResult(stages={s.id: results[s.id] for s in ordered if s.id in results})


def _kind(stage: Stage) -> StageKind:
    return getattr(stage, "kind", None) or StageKind.BASE


def _kind_value(stage: Stage) -> str:
    k = _kind(stage)
    return k.value if isinstance(k, StageKind) else str(k)
