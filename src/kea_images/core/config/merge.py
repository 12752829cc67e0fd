# src/kea_images/core/config/merge.py
"""
Deep-merge de configuração do kea-images.

Resolve a configuração efetiva a partir dos defaults empacotados e de um
ou mais overrides (arquivo local, flags da CLI).

Política:
    - dict → merge recursivo por chave
    - list → substituída por inteiro (allow-lists, flags de configure,
      comandos de ferramentas nunca são concatenados)
    - `null` em qualquer lado → substituição direta (chaves opcionais)
    - demais valores → substituídos, desde que o tipo coincida

Conflitos de tipo interrompem o merge e nomeiam a chave completa
(ex.: `engine.fail_fast`).
"""

from copy import deepcopy
from typing import Any, Dict, Tuple

from .errors import ConfigTypeConflictError


def _dotted(path: Tuple[str, ...]) -> str:
    return ".".join(path) or "<root>"


def _merge(base: Dict[str, Any], override: Dict[str, Any], path: Tuple[str, ...]) -> Dict[str, Any]:
    result: Dict[str, Any] = {k: deepcopy(v) for k, v in base.items()}

    for key, new in override.items():
        here = path + (str(key),)
        if key not in result:
            result[key] = deepcopy(new)
            continue

        old = result[key]
        if isinstance(old, dict) and isinstance(new, dict):
            result[key] = _merge(old, new, here)
        elif old is None or new is None:
            result[key] = deepcopy(new)
        elif isinstance(old, list) and isinstance(new, list):
            result[key] = deepcopy(new)
        elif type(old) is type(new):
            result[key] = new
        else:
            raise ConfigTypeConflictError(
                f"type conflict at '{_dotted(here)}': {type(old).__name__} vs {type(new).__name__}"
            )

    return result


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge determinístico e puramente funcional (nenhum input é mutado).

    Raises:
        ConfigTypeConflictError: Raiz não-dict ou conflito de tipo em alguma chave.
    """
    if not isinstance(base, dict) or not isinstance(override, dict):
        raise ConfigTypeConflictError(
            f"deep-merge requires mappings at the root: {type(base).__name__} vs {type(override).__name__}"
        )
    return _merge(base, override, ())
