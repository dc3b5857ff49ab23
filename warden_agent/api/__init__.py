from .server import create_app, ControlServer

__all__ = [
    'create_app',
    'ControlServer'
]
