# src/kea_images/core/traceability/__init__.py
"""
Pacote de rastreabilidade do kea-images (Build Manifest v1).

API pública exposta:
    - BuildManifest     → estrutura canônica do Manifest
    - create_manifest   → criação explícita do Manifest
    - add_event         → registro explícito de eventos no Event Log
    - stage_started     → marca início de execução de um Stage
    - stage_finished    → registra conclusão de um Stage
    - stage_failed      → registra falha de um Stage
    - image_exported    → registra uma imagem terminal exportada
    - save_manifest     → persistência do Manifest em JSON
    - load_manifest     → restauração determinística do Manifest

Invariantes:
    - O Manifest inicia com `stages`, `events` e `images` vazios
    - Eventos nunca são reordenados automaticamente
"""

from .manifest import (
    BuildManifest,
    create_manifest,
    add_event,
    stage_started,
    stage_finished,
    stage_failed,
    image_exported,
    save_manifest,
    load_manifest,
)

__all__ = [
    "BuildManifest",
    "create_manifest",
    "add_event",
    "stage_started",
    "stage_finished",
    "stage_failed",
    "image_exported",
    "save_manifest",
    "load_manifest",
]
