"""
BuildCatalog v1: catálogo determinístico de serviços, hooks e identidade.

No kea-images, as constantes mantidas à mão (executáveis por serviço,
allow-lists de hooks por família, módulos companheiros excluídos e a
identidade fixa de serviço) devem ser centralizadas e explícitas, nunca
inferidas por varredura do filesystem.

Este módulo fornece:
- ServiceSpec: um serviço lançável e seus executáveis
- PluginModule: um hook compilado, sua(s) família(s) e dependências
- ServiceIdentity: grupo/usuário de sistema com ids numéricos fixos
- BuildLayout: caminhos canônicos dentro dos snapshots
- BuildCatalog: ponto único de verdade, construído a partir da config
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from kea_images.core.config.errors import CatalogError


# o entrypoint executa `<sbin>/kea-$KEA_EXECUTABLE`
DISPATCH_PREFIX = "kea-"

# ids dos Stages fixos do grafo; imagens de serviço não podem reutilizá-los
FIXED_STAGE_IDS = ("base", "source", "compile", "install", "prune", "runtime")


@dataclass(frozen=True)
class ServiceSpec:
    """Um serviço do suite e os executáveis que sua imagem slim carrega."""

    name: str
    executables: Tuple[str, ...]
    dispatch: str
    plugins: bool = False

    @property
    def slim_image(self) -> str:
        return f"{self.name}-slim" if self.plugins else self.name

    @property
    def full_image(self) -> Optional[str]:
        return f"{self.name}-full" if self.plugins else None

    @property
    def dispatch_value(self) -> str:
        """Valor de KEA_EXECUTABLE lido pelo entrypoint (ex.: `dhcp4`)."""
        return self.dispatch[len(DISPATCH_PREFIX):]


@dataclass(frozen=True)
class PluginModule:
    """Hook compilado. `requires` lista módulos dos quais depende em runtime."""

    name: str
    families: FrozenSet[str] = frozenset()
    requires: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class ServiceIdentity:
    """Identidade sem privilégios criada no runtime (não usada para drop de privilégio)."""

    user: str
    group: str
    uid: int
    gid: int
    home: str = "/var/lib/kea"
    shell: str = "/sbin/nologin"


@dataclass(frozen=True)
class BuildLayout:
    """Caminhos canônicos (POSIX, absolutos) dentro dos snapshots."""

    prefix: str = "/usr/local"
    staging_root: str = "/staging"
    hooks_dir: str = "/usr/local/lib/kea/hooks"
    holding_dir: str = "/hooks"

    @property
    def sbin_dir(self) -> str:
        return posixpath.join(self.prefix, "sbin")

    @property
    def lib_dir(self) -> str:
        return posixpath.join(self.prefix, "lib")

    @property
    def include_dir(self) -> str:
        return posixpath.join(self.prefix, "include")

    def staged(self, path: str) -> str:
        """Traduz um caminho de runtime para sua posição dentro do staging root."""
        return posixpath.join(self.staging_root, path.lstrip("/"))


@dataclass(frozen=True)
class PluginSelection:
    """Conjunto de hooks de uma variante full, já sem módulos excluídos."""

    service: str
    selected: Tuple[str, ...]
    excluded: Tuple[str, ...] = ()


@dataclass(frozen=True)
class BuildCatalog:
    """Catálogo canônico do build.

    Extensibilidade é explícita: novos serviços, hooks e allow-lists entram
    pela configuração. Não há discovery automático.
    """

    services: Tuple[ServiceSpec, ...]
    modules: Mapping[str, PluginModule]
    allow_lists: Mapping[str, Tuple[str, ...]]
    identity: ServiceIdentity
    excluded_companions: FrozenSet[str] = frozenset()
    layout: BuildLayout = field(default_factory=BuildLayout)

    # ------------------------------------------------------------------
    # Consultas
    # ------------------------------------------------------------------
    def service(self, name: str) -> ServiceSpec:
        for s in self.services:
            if s.name == name:
                return s
        raise KeyError(f"unknown service: {name}")

    def plugin_services(self) -> List[ServiceSpec]:
        return [s for s in self.services if s.plugins]

    def is_excluded(self, module: str) -> bool:
        """True quando o módulo depende de um companheiro ausente deste build."""
        if module in self.excluded_companions:
            return True
        spec = self.modules.get(module)
        if spec is None:
            return False
        return bool(spec.requires & self.excluded_companions)

    def resolve_plugins(self, service: str) -> PluginSelection:
        """Allow-list do serviço menos os módulos excluídos (ordem lexicográfica)."""
        spec = self.service(service)
        if not spec.plugins:
            raise KeyError(f"service has no plugin ecosystem: {service}")
        listed = sorted(set(self.allow_lists.get(service, ())))
        selected = tuple(m for m in listed if not self.is_excluded(m))
        excluded = tuple(m for m in listed if self.is_excluded(m))
        return PluginSelection(service=service, selected=selected, excluded=excluded)

    def allow_listed(self) -> FrozenSet[str]:
        """União das seleções de todas as variantes full."""
        out: set = set()
        for s in self.plugin_services():
            out.update(self.resolve_plugins(s.name).selected)
        return frozenset(out)

    def image_names(self) -> List[str]:
        names: List[str] = []
        for s in self.services:
            names.append(s.slim_image)
            if s.full_image:
                names.append(s.full_image)
        return names

    # ------------------------------------------------------------------
    # Construção a partir da config
    # ------------------------------------------------------------------
    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "BuildCatalog":
        services = _parse_services(config.get("services"))
        _check_image_names(services, str(_section(config, "images").get("inspection") or "hooks"))
        plugin_names = {s.name for s in services if s.plugins}

        plugins_cfg = _section(config, "plugins")
        modules = _parse_modules(plugins_cfg.get("modules"), plugin_names)

        excluded = frozenset(_str_list(plugins_cfg.get("excluded_companions") or [], "plugins.excluded_companions"))

        allow_lists: Dict[str, Tuple[str, ...]] = {name: () for name in sorted(plugin_names)}
        raw_allow = plugins_cfg.get("allow_lists") or {}
        if not isinstance(raw_allow, dict):
            raise CatalogError("plugins.allow_lists must be a mapping")
        for service_name, names in raw_allow.items():
            if service_name not in plugin_names:
                raise CatalogError(f"allow-list declared for service without plugins: {service_name}")
            entries = _str_list(names or [], f"plugins.allow_lists.{service_name}")
            for module in entries:
                spec = modules.get(module)
                if spec is None:
                    raise CatalogError(f"allow-list '{service_name}' references unknown module: {module}")
                if service_name not in spec.families:
                    raise CatalogError(
                        f"module {module} is not compatible with service family '{service_name}'"
                    )
            allow_lists[service_name] = tuple(entries)

        identity = _parse_identity(_section(config, "service_identity"))

        install_cfg = _section(config, "install")
        prefix = str(install_cfg.get("prefix") or "/usr/local")
        layout = BuildLayout(
            prefix=prefix,
            staging_root=str(install_cfg.get("staging_root") or "/staging"),
            hooks_dir=str(plugins_cfg.get("hooks_dir") or posixpath.join(prefix, "lib", "kea", "hooks")),
            holding_dir=str(plugins_cfg.get("holding_dir") or "/hooks"),
        )
        for path in (layout.prefix, layout.staging_root, layout.hooks_dir, layout.holding_dir):
            if not path.startswith("/"):
                raise CatalogError(f"layout paths must be absolute: {path}")

        return cls(
            services=tuple(services),
            modules=modules,
            allow_lists=allow_lists,
            identity=identity,
            excluded_companions=excluded,
            layout=layout,
        )


def _section(config: Mapping[str, Any], name: str) -> Dict[str, Any]:
    value = config.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise CatalogError(f"config section '{name}' must be a mapping")
    return value


def _str_list(value: Any, where: str) -> List[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) and v.strip() for v in value):
        raise CatalogError(f"{where} must be a list of non-empty strings")
    return list(value)


def _parse_services(raw: Any) -> List[ServiceSpec]:
    if not isinstance(raw, dict) or not raw:
        raise CatalogError("services must be a non-empty mapping")
    out: List[ServiceSpec] = []
    for name, cfg in raw.items():
        cfg = cfg or {}
        if not isinstance(cfg, dict):
            raise CatalogError(f"services.{name} must be a mapping")
        executables = _str_list(cfg.get("executables"), f"services.{name}.executables")
        if not executables:
            raise CatalogError(f"services.{name}.executables must not be empty")
        dispatch = cfg.get("dispatch") or executables[0]
        if dispatch not in executables:
            raise CatalogError(f"services.{name}.dispatch must be one of its executables: {dispatch}")
        if not dispatch.startswith(DISPATCH_PREFIX) or dispatch == DISPATCH_PREFIX:
            raise CatalogError(f"services.{name}.dispatch must start with '{DISPATCH_PREFIX}': {dispatch}")
        out.append(
            ServiceSpec(
                name=str(name),
                executables=tuple(executables),
                dispatch=dispatch,
                plugins=bool(cfg.get("plugins", False)),
            )
        )
    return out


def _parse_modules(raw: Any, plugin_services: set) -> Dict[str, PluginModule]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise CatalogError("plugins.modules must be a mapping")
    modules: Dict[str, PluginModule] = {}
    for name, cfg in raw.items():
        cfg = cfg or {}
        families = frozenset(_str_list(cfg.get("families") or [], f"plugins.modules.{name}.families"))
        unknown = families - plugin_services
        if unknown:
            raise CatalogError(f"module {name} declares unknown families: {sorted(unknown)}")
        requires = frozenset(_str_list(cfg.get("requires") or [], f"plugins.modules.{name}.requires"))
        modules[str(name)] = PluginModule(name=str(name), families=families, requires=requires)
    return modules


def _parse_identity(cfg: Dict[str, Any]) -> ServiceIdentity:
    uid = cfg.get("uid")
    gid = cfg.get("gid")
    for label, value in (("uid", uid), ("gid", gid)):
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise CatalogError(f"service_identity.{label} must be a non-negative integer")
    user = cfg.get("user")
    group = cfg.get("group")
    if not isinstance(user, str) or not user or not isinstance(group, str) or not group:
        raise CatalogError("service_identity.user and service_identity.group are required")
    return ServiceIdentity(
        user=user,
        group=group,
        uid=uid,
        gid=gid,
        home=str(cfg.get("home") or "/var/lib/kea"),
        shell=str(cfg.get("shell") or "/sbin/nologin"),
    )


def _check_image_names(services: List[ServiceSpec], inspection: str) -> None:
    """Ids de Stage terminais são nomes de imagem: precisam ser únicos no grafo."""
    if inspection in FIXED_STAGE_IDS:
        raise CatalogError(f"images.inspection collides with a fixed stage id: {inspection}")
    reserved = set(FIXED_STAGE_IDS) | {inspection}
    seen: set = set()
    for s in services:
        for image in (s.slim_image, s.full_image):
            if image is None:
                continue
            if image in reserved:
                raise CatalogError(f"services.{s.name}: image name '{image}' collides with a fixed stage id")
            if image in seen:
                raise CatalogError(f"services.{s.name}: duplicate image name '{image}'")
            seen.add(image)
