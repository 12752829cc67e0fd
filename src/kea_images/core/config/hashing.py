# src/kea_images/core/config/hashing.py
"""
Identidade da configuração efetiva, registrada no Manifest ao lado da
versão de origem.

Mesma versão + mesmo hash ⇒ imagens byte-idênticas. Por isso ficam fora
do hash as chaves que só dizem onde e como o build roda, sem afetar o
conteúdo das imagens: diretórios de trabalho/saída, o espelho local e as
políticas do Engine.

Hash: sha256 do JSON canônico (chaves ordenadas, separadores compactos,
UTF-8).
"""

import hashlib
import json
from copy import deepcopy
from typing import Any, Dict, Iterable, Tuple


LOCATION_KEYS: Tuple[Tuple[str, ...], ...] = (
    ("build", "work_dir"),
    ("build", "output_dir"),
    ("source", "mirror_dir"),
    ("engine",),
)


def _without(config: Dict[str, Any], keys: Iterable[Tuple[str, ...]]) -> Dict[str, Any]:
    out = deepcopy(config)
    for path in keys:
        node: Any = out
        for part in path[:-1]:
            node = node.get(part) if isinstance(node, dict) else None
        if isinstance(node, dict):
            node.pop(path[-1], None)
    return out


def canonical_config_json(config: Dict[str, Any]) -> str:
    return json.dumps(config, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_config_hash(config: Dict[str, Any], *, ignore: Iterable[Tuple[str, ...]] = LOCATION_KEYS) -> str:
    """
    Hash SHA-256 (hex) da configuração, ignorando as chaves de `ignore`.

    Raises:
        TypeError: Se `config` não for um dicionário.
    """
    if not isinstance(config, dict):
        raise TypeError(f"config must be a dict, got {type(config).__name__}")
    canonical = canonical_config_json(_without(config, ignore))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
