# src/kea_images/core/engine/__init__.py
"""
Engine do kea-images.

Este pacote contém a implementação responsável por **planejar** e
**executar** o grafo de build de imagens.

Componentes principais:
    - planner → ordenação topológica determinística e validações estruturais
    - engine  → execução coordenada de Stages com políticas explícitas

Invariantes:
    - Stages só são executados após todas as suas dependências terem sucesso
    - Cada Stage é executado no máximo uma vez por run
    - O resultado da execução reflete explicitamente o estado de cada Stage

Limites explícitos:
    - Não define Stages concretos
    - Não executa ferramentas externas
    - Não exporta imagens
"""
