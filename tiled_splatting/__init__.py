from .data_types import RasterConfig, Splats, ProjectedSplats
from .errors import CapacityError
from .parallel import PrefixScanEngine, RadixSortEngine, ReduceEngine
from .perspective import Camera, GaussianProjector
from .rasterizer import RasterOut, TileRasterizer
from .renderer import SplatRenderer, render_splats
from .taichi_queue import TaichiQueue, taichi_queue

__all__ = [
  'RasterConfig',
  'Splats',
  'ProjectedSplats',
  'CapacityError',
  'PrefixScanEngine',
  'RadixSortEngine',
  'ReduceEngine',
  'Camera',
  'GaussianProjector',
  'RasterOut',
  'TileRasterizer',
  'SplatRenderer',
  'render_splats',
  'TaichiQueue',
  'taichi_queue',
]
