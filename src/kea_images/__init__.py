# src/kea_images/__init__.py
"""
kea-images: grafo de build reprodutível da família de imagens do ISC Kea.

A partir de uma única versão de release, o build verifica a assinatura do
código-fonte, compila uma vez e deriva imagens enxutas por serviço, variantes
com hooks e uma imagem de inspeção, todas exportadas de forma determinística.

Arquitetura em alto nível:
    - core.config       → carregamento, merge e hashing de configuração
    - core.pipeline     → protocolo de Stage, contexto de execução e registry
    - core.engine       → planejamento (DAG) e execução do grafo
    - core.traceability → Build Manifest e Event Log
    - catalog           → serviços, hooks, allow-lists e identidade de serviço
    - fs                → snapshots por Stage e export de imagens
    - toolchain         → ferramentas externas (gpg, make, strip, ldconfig)
    - stages            → Stages concretos do grafo
"""

__version__ = "0.1.0"
