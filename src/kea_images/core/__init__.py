# src/kea_images/core/__init__.py
"""
Core do kea-images.

Reúne as responsabilidades independentes do domínio de imagens:
planejamento, execução e rastreabilidade de um grafo de Stages.

Componentes principais:
    - config       → resolução de configuração (merge, validação estrutural, hashing)
    - pipeline     → protocolo de Stage, contexto de execução e registry
    - engine       → planejamento (DAG) e execução controlada
    - traceability → Manifest e Event Log para auditoria

Limites explícitos:
    - Não executa ferramentas externas
    - Não conhece serviços, hooks ou layout de imagens
"""
