"""DSMR-reader deployment: environment file, compose file, installer."""
from .compose import RemoteTemplateFetcher, configure_compose, dump_compose
from .environment import EnvFile, configure_environment, generate_secret_key
from .installer import DsmrInstaller

__all__ = [
    'RemoteTemplateFetcher',
    'configure_compose',
    'dump_compose',
    'EnvFile',
    'configure_environment',
    'generate_secret_key',
    'DsmrInstaller',
]
