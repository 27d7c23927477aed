"""
liverelay
=========
Descobre a URL de mídia de salas ao vivo protegidas contra automação e,
opcionalmente, retransmite o stream transcodificado em MP4 fragmentado.
"""

__version__ = "0.1.0"
