from importlib.metadata import version

try:
    __version__ = version("ctx-engine")
except Exception:
    __version__ = "unknown"
