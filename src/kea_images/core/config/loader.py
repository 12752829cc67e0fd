# src/kea_images/core/config/loader.py
"""
Carregamento da configuração efetiva de um build.

Fontes, em ordem de prioridade crescente:
    1. defaults (obrigatório; por padrão `kea_images/resources/defaults.yaml`)
    2. arquivo local de overrides (opcional; ignorado se não existir)
    3. overrides programáticos (`apply_overrides`, usado pela CLI)

A semântica do catálogo (serviços, hooks, identidade) é validada depois,
por `catalog.BuildCatalog.from_config`.
"""

import json
from importlib import resources
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

import yaml  # PyYAML

from .errors import (
    ConfigParseError,
    DefaultsNotFoundError,
    InvalidConfigRootTypeError,
    UnsupportedConfigFormatError,
)
from .merge import deep_merge


PathLike = Union[str, Path]

_PARSERS: Dict[str, Callable[[str], Any]] = {
    ".yaml": yaml.safe_load,
    ".yml": yaml.safe_load,
    ".json": json.loads,
}


def default_config_path() -> Path:
    return Path(str(resources.files("kea_images").joinpath("resources", "defaults.yaml")))


def read_config_file(path: PathLike) -> Dict[str, Any]:
    """
    Lê um arquivo YAML/JSON de configuração.

    Arquivo vazio vale `{}`.

    Raises:
        DefaultsNotFoundError: Arquivo inexistente.
        UnsupportedConfigFormatError: Extensão desconhecida.
        ConfigParseError: Sintaxe inválida.
        InvalidConfigRootTypeError: Raiz não é um mapeamento.
    """
    path = Path(path)
    if not path.is_file():
        raise DefaultsNotFoundError(f"config file not found: {path}")

    parser = _PARSERS.get(path.suffix.lower())
    if parser is None:
        raise UnsupportedConfigFormatError(f"unsupported config format: {path.suffix or path.name}")

    try:
        data = parser(path.read_text(encoding="utf-8"))
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigParseError(f"cannot parse {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidConfigRootTypeError(f"config root must be a mapping in {path}, got {type(data).__name__}")
    return data


def load_config(
    *,
    defaults_path: Optional[PathLike] = None,
    local_path: Optional[PathLike] = None,
) -> Dict[str, Any]:
    """
    Resolve defaults + arquivo local.

    Raises:
        ConfigError: Qualquer falha de leitura, formato ou merge.
    """
    config = read_config_file(defaults_path if defaults_path is not None else default_config_path())
    if local_path is not None and Path(local_path).exists():
        config = deep_merge(config, read_config_file(local_path))
    return config


def apply_overrides(config: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Overrides programáticos, com a mesma política de merge do loader."""
    return deep_merge(config, overrides)
