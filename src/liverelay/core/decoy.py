"""
decoy.py
========
Política de rejeição de decoys: vídeos de teste/placeholder que o site entrega
a visitantes não autenticados ou suspeitos de automação.

Um decoy nunca interrompe a cadeia de estratégias; ele só é devolvido como
último recurso, marcado com ``is_decoy=True``.
"""

from dataclasses import dataclass
from typing import Tuple


# Marcadores conhecidos de conteúdo de teste (vídeo "uuu_" do player web).
DEFAULT_DECOY_MARKERS: Tuple[str, ...] = ("douyin-pc-web/uuu_",)

# Marcadores mais amplos, usados só para avisar antes de transcodificar: basta
# um deles para a URL ser suspeita.
SUSPECT_MARKERS: Tuple[str, ...] = ("/douyin-pc-web/", "uuu_")


@dataclass(frozen=True)
class DecoyPolicy:
    """Predicado sobre URLs: True quando a URL contém um marcador de decoy."""
    markers: Tuple[str, ...] = DEFAULT_DECOY_MARKERS

    def is_decoy(self, url: str) -> bool:
        if not url:
            return False
        url_lower = url.lower()
        return any(marker.lower() in url_lower for marker in self.markers)

    def __call__(self, url: str) -> bool:
        return self.is_decoy(url)


DEFAULT_DECOY_POLICY = DecoyPolicy()
SUSPECT_DECOY_POLICY = DecoyPolicy(markers=SUSPECT_MARKERS)


def decoy(url: str) -> bool:
    """Atalho para a política padrão."""
    return DEFAULT_DECOY_POLICY.is_decoy(url)
