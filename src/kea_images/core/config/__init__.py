# src/kea_images/core/config/__init__.py

"""
Camada de configuração do kea-images.

Este pacote contém as estruturas e utilitários responsáveis por carregar,
mesclar, validar estruturalmente e identificar a configuração de um build
de imagens.

A configuração no kea-images é:
    - declarativa
    - determinística
    - explicitamente versionável

Responsabilidades do pacote:
    - Carregamento de defaults empacotados + overrides locais
    - Resolução de configuração final via deep-merge determinístico
    - Geração de hash canônico para rastreabilidade no Manifest

Limites explícitos:
    - Não valida o catálogo de serviços/hooks (ver `kea_images.catalog`)
    - Não executa o grafo de build
"""
