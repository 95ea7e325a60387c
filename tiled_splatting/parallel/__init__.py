from .common import query_temp_size, BLOCK_SIZE
from .scan import PrefixScanEngine
from .reduce import ReduceEngine
from .radix_sort import RadixSortEngine

__all__ = [
  "query_temp_size",
  "BLOCK_SIZE",
  "PrefixScanEngine",
  "ReduceEngine",
  "RadixSortEngine",
]
