from importlib.metadata import PackageNotFoundError, version

__all__ = ["__version__"]

try:
    __version__ = version("backup-dash")
except PackageNotFoundError:
    # Source checkout without installed metadata
    __version__ = "0.0.0+dev"
