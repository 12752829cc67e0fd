# src/kea_images/core/config/errors.py
"""
Erros da camada de configuração.

Tudo aqui é falha de definição do build, detectada antes de qualquer
Stage executar. A CLI captura `ConfigError` e sai com código 2.
"""


class ConfigError(Exception):
    """Base dos erros de configuração e de catálogo."""


class DefaultsNotFoundError(ConfigError):
    """O arquivo de defaults não existe (sem defaults não há config efetiva)."""


class UnsupportedConfigFormatError(ConfigError):
    """Extensão fora de `.yaml`, `.yml` e `.json`."""


class ConfigParseError(ConfigError):
    """Conteúdo YAML/JSON sintaticamente inválido."""


class InvalidConfigRootTypeError(ConfigError):
    """A raiz do arquivo não é um mapeamento."""


class ConfigTypeConflictError(ConfigError):
    """
    Conflito de tipos durante o deep-merge.

    Ex.: defaults `engine: {fail_fast: false}` e override `engine: fast`.
    Nenhuma config parcial é produzida.
    """


class CatalogError(ConfigError):
    """
    Catálogo de build inconsistente.

    Ex.: allow-list citando um módulo desconhecido, allow-list para um
    serviço sem hooks, identidade de serviço com uid/gid inválido.
    """
