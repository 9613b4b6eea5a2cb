# compile_config is the single entry point the ground station binding calls
from fsmc.compiler import compile_config

__all__ = ["compile_config"]
