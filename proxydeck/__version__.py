__version__ = "0.3.0"
__repository__ = "https://github.com/proxydeck/proxydeck"
