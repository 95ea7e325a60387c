from .forward import forward_kernel
from .tile_rasterizer import RasterOut, TileRasterizer

__all__ = [
  'forward_kernel',
  'RasterOut',
  'TileRasterizer',
]
