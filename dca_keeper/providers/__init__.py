from .base import ChainReader, Provider
from .sui_rpc import SuiRpcClient

__all__ = ["ChainReader", "Provider", "SuiRpcClient"]
