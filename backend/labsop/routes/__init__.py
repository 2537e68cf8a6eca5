from importlib import import_module

modules = [
    'templates',
    'step_config',
    'versions',
]

for m in modules:
    import_module(f'.{m}', __name__)

__all__ = modules
