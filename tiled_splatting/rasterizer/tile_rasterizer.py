from numbers import Integral
from beartype import beartype
from beartype.typing import NamedTuple, Optional, Sequence, Tuple
from taichi.math import ivec2
import torch

from tiled_splatting.data_types import ProjectedSplats, RasterConfig
from tiled_splatting.errors import check_capacity
from tiled_splatting.log import create_logger
from tiled_splatting.mapper.tile_mapper import tile_grid, tile_mapper
from tiled_splatting.parallel import PrefixScanEngine, RadixSortEngine, query_temp_size
from tiled_splatting.taichi_lib import resolve_shared_memory
from tiled_splatting.taichi_lib.conversions import torch_taichi
from tiled_splatting.taichi_queue import queued, read_scalar

from .forward import forward_kernel

logger = create_logger(__name__)


RasterOut = NamedTuple('RasterOut', [
  ('image', torch.Tensor),          # (3, H, W) channel planar
  ('radii', torch.Tensor),          # (N) screen radius in pixels, 0 if not rendered
  ('transmittance', torch.Tensor),  # (H, W) final transmittance per pixel
  ('n_contrib', torch.Tensor),      # (H, W) index (1 based) of the last contributing instance in the tile
  ('num_rendered', int),            # number of tile instances
  ('point_list', torch.Tensor),     # (num_rendered) sorted instance -> splat index
  ('tile_ranges', torch.Tensor),    # (tiles_high, tiles_wide, 2) start/end of each tile's instances
])


class TileRasterizer:
  """ Tile based forward rasterizer. 
  
    Owns the per-splat and per-instance buffers, which are reused across frames 
    while they are large enough. A frame needing more than `capacity` tile instances 
    raises CapacityError, call reserve(error.required) and render the frame again.
  """

  def __init__(self, config:RasterConfig = RasterConfig(), capacity:int = 1 << 20):
    self.config = config
    self.capacity = 0

    self.scan = PrefixScanEngine(config.use_shared_memory)
    self.sorter = RadixSortEngine(config.use_shared_memory)

    self.screen = None
    self.instances = None
    self.tile_ranges = None

    self.reserve(capacity)

  @property
  def use_shared_memory(self) -> bool:
    return resolve_shared_memory(self.config.use_shared_memory)

  def reserve(self, capacity:int):
    """ Grow the tile instance capacity, buffers are (re)allocated on the next frame """
    assert capacity >= 0, f"capacity must be non-negative, got {capacity}"

    if capacity > self.capacity:
      if self.capacity > 0:
        logger.info(f"Growing tile instance capacity {self.capacity} -> {capacity}")

      self.capacity = capacity
      self.instances = None

  def _instance_buffers(self, device:torch.device):
    if self.instances is None or self.instances['keys_in'].device != device:
      n = self.capacity
      self.instances = dict(
        keys_in = torch.empty((n, ), dtype=torch.int64, device=device),
        keys_out = torch.empty((n, ), dtype=torch.int64, device=device),
        values_in = torch.empty((n, ), dtype=torch.int32, device=device),
        values_out = torch.empty((n, ), dtype=torch.int32, device=device),
        sort_temp = torch.empty((RadixSortEngine.query_temp_size(n), ), dtype=torch.int32, device=device)
      )
    return self.instances

  def _tile_ranges(self, num_tiles:int, device:torch.device) -> torch.Tensor:
    ranges = self.tile_ranges
    if ranges is None or ranges.shape[0] < num_tiles or ranges.device != device:
      self.tile_ranges = ranges = torch.empty((num_tiles, 2), dtype=torch.int32, device=device)

    ranges = ranges[:num_tiles]
    ranges.zero_()
    return ranges

  def _screen_buffers(self, n:int, dtype:torch.dtype, device:torch.device):
    screen = self.screen
    if (screen is None or screen['radii'].shape[0] < n 
        or screen['mean_pixel'].dtype != dtype or screen['radii'].device != device):

      self.screen = screen = dict(
        mean_pixel = torch.empty((n, 2), dtype=dtype, device=device),
        conic = torch.empty((n, 3), dtype=dtype, device=device),
        radii = torch.empty((n, ), dtype=torch.int32, device=device),
        counts = torch.empty((n, ), dtype=torch.int32, device=device),
        offsets = torch.empty((n, ), dtype=torch.int32, device=device),
        scan_temp = torch.empty((query_temp_size(n), ), dtype=torch.int32, device=device)
      )
    return {k: v[:n] if k != 'scan_temp' else v for k, v in screen.items()}

  @beartype
  def forward(self, projected:ProjectedSplats, opacity:torch.Tensor, features:torch.Tensor,
              image_size:Tuple[Integral, Integral], 
              background:Optional[Sequence[float]] = None) -> RasterOut:
    """
    Render projected splats to an image.
    Parameters:
      projected: ProjectedSplats (N) - mean and covariance in normalized device coordinates, view depth
      opacity: (N, 1) or (N) activated opacity
      features: (N, 3) rgb colour
      image_size: (width, height)
      background: rgb triple, defaults to black

    Returns:
      RasterOut
    """
    config = self.config
    n = projected.batch_size[0]
    dtype, device = projected.position.dtype, projected.position.device

    assert opacity.shape[0] == n and opacity.numel() == n, f"Expected opacity (N, 1), got {opacity.shape}"
    assert features.shape == (n, 3), f"Expected features (N, 3), got {features.shape}"

    background = (0.0, 0.0, 0.0) if background is None else tuple(float(x) for x in background)
    assert len(background) == 3, f"Expected rgb background, got {background}"

    width, height = image_size
    grid = tile_grid(image_size, config.tile_size)
    num_tiles = grid[0] * grid[1]
    assert num_tiles < 2**31, f"Tile grid {grid} too large for a 32 bit tile id"

    mapper = tile_mapper(config, dtype)
    screen = self._screen_buffers(n, dtype, device)

    tile_ranges = self._tile_ranges(num_tiles, device)

    # 1. per splat screen footprint and number of tiles touched
    if n > 0:
      mapper.allocate_tiles(projected.position.contiguous(), projected.cov2d.contiguous(), 
                            projected.depth.contiguous(), ivec2(image_size), ivec2(grid),
                            screen['mean_pixel'], screen['conic'], screen['radii'], screen['counts'])

      # 2. instance offsets, single readback of the total
      self.scan.inclusive_sum(screen['scan_temp'], screen['counts'], screen['offsets'], 0, n)
      num_rendered = read_scalar(screen['offsets'], n - 1)
    else:
      num_rendered = 0

    logger.debug(f"{n} splats, {num_tiles} tiles ({grid[0]}x{grid[1]}), {num_rendered} instances")

    if num_rendered <= 0:
      return self._background_frame(screen['radii'], tile_ranges, grid, image_size, background, dtype, device)

    check_capacity("tile instances", num_rendered, self.capacity)
    instances = self._instance_buffers(device)

    # 3. one (key, splat) instance per touched tile
    mapper.duplicate_with_keys(screen['mean_pixel'], screen['radii'], projected.depth.contiguous(), 
                               screen['offsets'], ivec2(grid), instances['keys_in'], instances['values_in'])

    # 4. sort by tile, then depth
    self.sorter.sort_pairs(instances['sort_temp'], 
                           instances['keys_in'], instances['values_in'],
                           instances['keys_out'], instances['values_out'], 
                           num_rendered, config.sort_bits)

    # 5. range of instances for each tile
    mapper.find_ranges(instances['keys_out'], num_rendered, tile_ranges)

    # 6. blend instances per pixel, front to back
    shape = (height, width)
    image = torch.empty((3, *shape), dtype=dtype, device=device)
    transmittance = torch.empty(shape, dtype=dtype, device=device)
    n_contrib = torch.empty(shape, dtype=torch.int32, device=device)

    render = queued(forward_kernel(config, torch_taichi[dtype], self.use_shared_memory))
    render(screen['mean_pixel'], screen['conic'], 
           opacity.reshape(n).to(dtype).contiguous(), features.to(dtype).contiguous(),
           tile_ranges, instances['values_out'],
           mapper.lib.vec3(*background),
           image, transmittance, n_contrib)
    
    logger.debug(f"rendered {width}x{height} image")

    return RasterOut(
      image=image,
      radii=screen['radii'].clone(),
      transmittance=transmittance,
      n_contrib=n_contrib,
      num_rendered=num_rendered,
      point_list=instances['values_out'][:num_rendered].clone(),
      tile_ranges=tile_ranges.clone().view(grid[1], grid[0], 2)
    )

  def _background_frame(self, radii, tile_ranges, grid, image_size, background, dtype, device) -> RasterOut:
    width, height = image_size
    image = torch.tensor(background, dtype=dtype, device=device).view(3, 1, 1).expand(3, height, width)

    return RasterOut(
      image=image.contiguous(),
      radii=radii.clone(),
      transmittance=torch.ones((height, width), dtype=dtype, device=device),
      n_contrib=torch.zeros((height, width), dtype=torch.int32, device=device),
      num_rendered=0,
      point_list=torch.empty((0, ), dtype=torch.int32, device=device),
      tile_ranges=tile_ranges.clone().view(grid[1], grid[0], 2)
    )

  __call__ = forward
