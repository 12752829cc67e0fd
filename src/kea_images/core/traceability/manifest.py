# src/kea_images/core/traceability/manifest.py
"""
Build Manifest v1: o registro de auditoria de um build de imagens.

Responde, depois do fato, a quatro perguntas:
    - qual release e qual configuração entraram (`inputs`)
    - o que cada Stage fez, quanto tempo levou e por que falhou (`stages`)
    - em que ordem as coisas aconteceram (`events`)
    - quais imagens saíram e com que digests (`images`)

Regras:
    - eventos só entram por chamadas explícitas desta API, na ordem em
      que ocorrem
    - timestamps são sempre UTC
    - a persistência é JSON com chaves ordenadas, gravado de forma atômica
      ao lado das imagens (`build-manifest.json`)

Não executa o grafo nem decide políticas (fail-fast, skip); não migra
schemas antigos.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional


def _ensure_tzaware_utc(dt: datetime) -> datetime:
    """
    Normaliza um timestamp para timezone-aware em UTC.

    Timestamps timezone-naive são assumidos como UTC; os demais são
    convertidos preservando o instante.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _iso(dt: datetime) -> str:
    return _ensure_tzaware_utc(dt).isoformat()


def _ms_between(start: datetime, end: datetime) -> int:
    s = _ensure_tzaware_utc(start)
    e = _ensure_tzaware_utc(end)
    return max(0, int((e - s).total_seconds() * 1000))


@dataclass
class BuildManifest:
    """
    Manifest v1: registro forense de um build.

    Campos principais:
        - run: metadados da execução (run_id, started_at, tool_version)
        - inputs: versão de origem e hash da configuração resolvida
        - stages: estado incremental de cada Stage, indexado por stage_id
        - events: Event Log ordenado
        - images: imagens exportadas, indexadas pelo nome

    Invariantes:
        - `stages` e `images` são sempre dicionários
        - `events` é sempre uma lista ordenada
        - A estrutura completa é serializável em JSON
    """

    run: Dict[str, Any]
    inputs: Dict[str, Any]
    stages: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    events: List[Dict[str, Any]] = field(default_factory=list)
    images: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Cópia serializável e independente do estado interno."""
        return {
            "run": dict(self.run),
            "inputs": dict(self.inputs),
            "stages": {k: dict(v) for k, v in self.stages.items()},
            "events": [dict(e) for e in self.events],
            "images": {k: dict(v) for k, v in self.images.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BuildManifest":
        """
        Reconstrói um Manifest a partir de sua representação em dicionário.

        Campos ausentes são inicializados vazios; não há validação
        semântica nem migração de schema.
        """
        return cls(
            run=dict(data.get("run", {})),
            inputs=dict(data.get("inputs", {})),
            stages={k: dict(v) for k, v in (data.get("stages", {}) or {}).items()},
            events=[dict(e) for e in (data.get("events", []) or [])],
            images={k: dict(v) for k, v in (data.get("images", {}) or {}).items()},
        )


def create_manifest(
    *,
    run_id: str,
    started_at: datetime,
    tool_version: str,
    version: str,
    config_hash: str,
) -> BuildManifest:
    """
    Cria o Manifest inicial de um build.

    ⚠️ Importante: esta função **não emite eventos implicitamente**.
    O Event Log inicia vazio e só é preenchido por chamadas explícitas
    a `add_event`, `stage_started`, `stage_finished`, `stage_failed` ou
    `image_exported`.

    Args:
        run_id (str): Identificador único da execução.
        started_at (datetime): Timestamp de início.
        tool_version (str): Versão do kea-images.
        version (str): Versão do release de origem sendo empacotado.
        config_hash (str): Hash canônico da configuração efetiva.

    Returns:
        BuildManifest: Manifest inicializado, sem Stages nem eventos.
    """
    started_at = _ensure_tzaware_utc(started_at)
    return BuildManifest(
        run={
            "run_id": run_id,
            "started_at": _iso(started_at),
            "tool_version": tool_version,
        },
        inputs={
            "version": version,
            "config_hash": config_hash,
        },
    )


def add_event(
    manifest: BuildManifest,
    *,
    event_type: str,
    ts: datetime,
    stage_id: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Adiciona um evento explícito ao Event Log.

    Cada chamada adiciona exatamente um evento; eventos não são
    reordenados nem deduplicados.
    """
    ev: Dict[str, Any] = {"event_type": event_type, "timestamp": _iso(ts)}
    if stage_id is not None:
        ev["stage_id"] = stage_id
    if payload is not None:
        ev["payload"] = payload
    manifest.events.append(ev)


def stage_started(manifest: BuildManifest, *, stage_id: str, kind: str, ts: datetime) -> None:
    """Marca o Stage como `running` e registra `stage_started`."""
    ts = _ensure_tzaware_utc(ts)
    manifest.stages.setdefault(stage_id, {})
    manifest.stages[stage_id].update(
        {
            "stage_id": stage_id,
            "kind": kind,
            "status": "running",
            "started_at": _iso(ts),
        }
    )
    add_event(manifest, event_type="stage_started", ts=ts, stage_id=stage_id, payload={"kind": kind})


def stage_finished(
    manifest: BuildManifest,
    *,
    stage_id: str,
    ts: datetime,
    result: Dict[str, Any],
) -> None:
    """
    Registra a conclusão (success ou skipped) de um Stage.

    A duração é calculada a partir de `started_at` quando disponível;
    Stages pulados nunca iniciaram e ficam com duração zero.

    Args:
        manifest (BuildManifest): Manifest a ser atualizado.
        stage_id (str): Identificador do Stage.
        ts (datetime): Timestamp de finalização.
        result (Dict[str, Any]): status, summary, metrics, warnings e artifacts.
    """
    ts = _ensure_tzaware_utc(ts)
    s = manifest.stages.setdefault(stage_id, {"stage_id": stage_id})
    started_iso = s.get("started_at")
    started_dt = datetime.fromisoformat(started_iso) if started_iso else ts

    status = result.get("status", "success")
    s.update(
        {
            "status": status,
            "finished_at": _iso(ts),
            "duration_ms": _ms_between(started_dt, ts),
            "summary": result.get("summary"),
            "metrics": result.get("metrics", {}) or {},
            "warnings": result.get("warnings", []) or [],
            "artifacts": result.get("artifacts", {}) or {},
        }
    )
    add_event(
        manifest,
        event_type="stage_finished",
        ts=ts,
        stage_id=stage_id,
        payload={"status": status, "duration_ms": s["duration_ms"]},
    )


def stage_failed(
    manifest: BuildManifest,
    *,
    stage_id: str,
    ts: datetime,
    error: Dict[str, Any],
) -> None:
    """
    Registra a falha de um Stage.

    `error` é o BuildErrorPayload serializado (type, message, details, hint).
    """
    ts = _ensure_tzaware_utc(ts)
    s = manifest.stages.setdefault(stage_id, {"stage_id": stage_id})
    s.update(
        {
            "status": "failed",
            "finished_at": _iso(ts),
            "error": dict(error),
        }
    )
    add_event(
        manifest,
        event_type="stage_failed",
        ts=ts,
        stage_id=stage_id,
        payload={"type": error.get("type"), "message": error.get("message")},
    )


def image_exported(
    manifest: BuildManifest,
    *,
    image: str,
    stage_id: str,
    ts: datetime,
    tar_sha256: str,
    config_sha256: str,
    files: Optional[Dict[str, str]] = None,
) -> None:
    """Registra uma imagem terminal exportada e seus digests."""
    entry: Dict[str, Any] = {
        "image": image,
        "stage_id": stage_id,
        "tar_sha256": tar_sha256,
        "config_sha256": config_sha256,
    }
    if files:
        entry["files"] = dict(files)
    manifest.images[image] = entry
    add_event(
        manifest,
        event_type="image_exported",
        ts=ts,
        stage_id=stage_id,
        payload={"image": image, "tar_sha256": tar_sha256},
    )


def save_manifest(manifest: BuildManifest, path: Path) -> None:
    """
    Persiste o Manifest em JSON determinístico.

    Diretórios intermediários são criados; a escrita passa por um arquivo
    temporário no mesmo diretório seguido de `os.replace`.

    Raises:
        OSError: Em caso de falha ao criar diretórios ou escrever o arquivo.
        TypeError: Se o conteúdo não for serializável em JSON.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(manifest.to_dict(), ensure_ascii=False, indent=2, sort_keys=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(text, encoding="utf-8")
    os.replace(tmp, path)


def load_manifest(path: Path) -> BuildManifest:
    """
    Carrega um Manifest persistido.

    Raises:
        OSError: Em caso de falha de leitura.
        json.JSONDecodeError: Em caso de JSON inválido.
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return BuildManifest.from_dict(data)
