"""
manager.py
==========
Gerenciador de plugins do liverelay.

Responsável por registrar plugins e selecionar o mais adequado para uma URL.
Plugins específicos de sites têm prioridade sobre o plugin genérico, e são
eles que definem quais domínios são reconhecidos na validação de endereços.
"""

import re
import urllib.parse
from typing import List, Tuple

from liverelay.plugins.generic.base import BasePlugin, GenericPlugin
from liverelay.plugins.specific_sites.douyin import DouyinPlugin


class PluginManager:
    """
    Gerencia o registro e seleção de plugins.

    Plugins são avaliados em ordem de registro. O primeiro cujo domain_pattern
    casar com o host da URL fornecida será utilizado. Se nenhum casar, o GenericPlugin
    é retornado como fallback.
    """

    def __init__(self, register_defaults: bool = True):
        self.plugins: List[BasePlugin] = []
        self.generic_plugin = GenericPlugin()
        if register_defaults:
            self._register_defaults()

    def _register_defaults(self) -> None:
        """Registra os plugins específicos de sites incluídos no pacote."""
        self.register_plugin(DouyinPlugin())

    def register_plugin(self, plugin: BasePlugin) -> None:
        """Registra um plugin no gerenciador."""
        self.plugins.append(plugin)

    def get_plugin_for_url(self, url: str) -> BasePlugin:
        """
        Retorna o plugin mais adequado para a URL fornecida.
        O domain_pattern é testado apenas contra o host da URL.
        Fallback: GenericPlugin.
        """
        host = urllib.parse.urlparse(url).hostname or ""
        for plugin in self.plugins:
            if re.search(plugin.domain_pattern, host, re.IGNORECASE):
                return plugin
        return self.generic_plugin

    def recognized_domains(self) -> Tuple[str, ...]:
        """Domínios reconhecidos por todos os plugins registrados (sem repetição)."""
        domains: List[str] = []
        for plugin in self.plugins:
            for domain in plugin.recognized_domains:
                if domain not in domains:
                    domains.append(domain)
        return tuple(domains)
