from numbers import Integral
from beartype import beartype
from beartype.typing import Optional, Sequence, Tuple

from tiled_splatting.data_types import RasterConfig, Splats
from tiled_splatting.errors import CapacityError
from tiled_splatting.log import create_logger
from tiled_splatting.perspective import Camera, GaussianProjector
from tiled_splatting.rasterizer import RasterOut, TileRasterizer

logger = create_logger(__name__)


class SplatRenderer:
  """ Renders frames of splats, projection then tile rasterization. 
    Keeps the rasterizer (and its buffers) across frames.
  """

  def __init__(self, config:RasterConfig = RasterConfig(), capacity:int = 1 << 20, use_focal:bool = False):
    self.config = config
    self.use_focal = use_focal

    self.projector = GaussianProjector(config)
    self.rasterizer = TileRasterizer(config, capacity)

  @property
  def capacity(self) -> int:
    return self.rasterizer.capacity

  @beartype
  def render(self, splats:Splats, camera:Camera, 
             image_size:Optional[Tuple[Integral, Integral]] = None,
             background:Optional[Sequence[float]] = None) -> RasterOut:
    
    image_size = camera.image_size if image_size is None else image_size
    assert image_size is not None, "image_size must be given, or set on the camera"

    projected = self.projector.forward(splats, camera, use_focal=self.use_focal)

    def rasterize():
      return self.rasterizer.forward(projected, splats.opacity, splats.feature, 
                                     image_size, background)

    try:
      return rasterize()
    except CapacityError as e:
      logger.info(f"Frame aborted ({e}), retrying with capacity {e.required}")
      self.rasterizer.reserve(e.required)
      return rasterize()

  __call__ = render


@beartype
def render_splats(splats:Splats, camera:Camera, 
                  config:RasterConfig = RasterConfig(),
                  image_size:Optional[Tuple[Integral, Integral]] = None,
                  background:Optional[Sequence[float]] = None,
                  use_focal:bool = False) -> RasterOut:
  """ Render a single frame, see SplatRenderer for rendering many frames """
  renderer = SplatRenderer(config, capacity=0, use_focal=use_focal)
  return renderer.render(splats, camera, image_size=image_size, background=background)
