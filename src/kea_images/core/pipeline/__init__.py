"""
# Pipeline Core (kea-images)

Este pacote define os **contratos canônicos** e as **estruturas fundamentais**
do grafo de build de imagens.

O build é modelado como um **DAG explícito de Stages**, onde:
- cada Stage declara identidade, tipo semântico e dependências
- a execução é coordenada exclusivamente pelo Engine
- dados entre Stages fluem apenas por snapshots selados

## Componentes

- **types**: `StageStatus`, `StageKind`, `StageResult`
- **stage**: `Stage` (Protocol)
- **context**: `RunContext` (versão, config, snapshots, runner, logs, warnings)
- **registry**: `StageRegistry` (unicidade de `stage.id`)

## Limites Explícitos

- Não planeja execução
- Não executa o grafo
- Não depende de ferramentas externas
"""
