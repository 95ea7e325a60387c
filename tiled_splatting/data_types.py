from dataclasses import dataclass
from beartype.typing import Optional
from beartype import beartype
import torch

from tensordict import TensorClass


@beartype
@dataclass(frozen=True, eq=True, kw_only=True)
class RasterConfig:
  tile_size: int = 16

  # splats closer than this (view depth) are culled
  near_plane: float = 0.2

  # radius of the splat footprint in standard deviations
  gaussian_scale: float = 3.0

  # low pass filter, added to the diagonal of the (pixel) covariance matrix
  blur_cov: float = 0.3

  # clamp view position to this factor of tan(fov) for the affine jacobian
  fov_clamp: float = 1.3

  # added to the determinant when inverting the covariance matrix
  cov_eps: float = 1e-6

  # floor for the discriminant when computing the max eigenvalue (radius)
  min_discriminant: float = 0.1

  clamp_max_alpha: float = 0.99
  alpha_threshold: float = 1. / 255.

  # stop alpha blending once transmittance would fall below this
  transmittance_threshold: float = 1e-4

  # number of key bits sorted (tile id in the high 32 bits, depth in the low 32)
  sort_bits: int = 64

  # None - choose by taichi arch (cooperative shared memory kernels on cuda)
  use_shared_memory: Optional[bool] = None

  def __post_init__(self):
    assert self.tile_size > 0 and self.tile_size * self.tile_size <= 1024, \
      f"tile_size {self.tile_size} must give at most 1024 pixels per tile"
    assert 0 < self.sort_bits <= 64, f"sort_bits must be in (0, 64], got {self.sort_bits}"
    assert self.near_plane > 0

  @property
  def tile_area(self) -> int:
    return self.tile_size * self.tile_size


class Splats(TensorClass):
  position     : torch.Tensor # 3  - xyz
  scale        : torch.Tensor # 3  - activated scale
  rotation     : torch.Tensor # 4  - quaternion (r, x, y, z)
  opacity      : torch.Tensor # 1  - activated opacity
  feature      : torch.Tensor # 3  - rgb (spherical harmonics evaluated)

  def __post_init__(self):
    assert self.position.shape[1] == 3, f"Expected shape (N, 3), got {self.position.shape}"
    assert self.scale.shape[1] == 3, f"Expected shape (N, 3), got {self.scale.shape}"
    assert self.rotation.shape[1] == 4, f"Expected shape (N, 4), got {self.rotation.shape}"
    assert self.opacity.shape[1] == 1, f"Expected shape (N, 1), got {self.opacity.shape}"
    assert self.feature.shape[1] == 3, f"Expected shape (N, 3), got {self.feature.shape}"

  @staticmethod
  def from_arrays(position, scale, rotation, opacity, feature,
                  device=None, dtype=torch.float32) -> 'Splats':
    """ Build from flat per-splat arrays,
      position[3N], scale[3N], rotation[4N], opacity[N], feature[3N]
    """
    def as_rows(x, width:int):
      return torch.as_tensor(x, dtype=dtype, device=device).reshape(-1, width)

    position = as_rows(position, 3)
    n = position.shape[0]

    return Splats(
      position=position,
      scale=as_rows(scale, 3),
      rotation=as_rows(rotation, 4),
      opacity=as_rows(opacity, 1),
      feature=as_rows(feature, 3),
      batch_size=(n,)
    )


class ProjectedSplats(TensorClass["shadow"]):
  position : torch.Tensor # 2 - normalized device coordinates (mean)
  cov2d    : torch.Tensor # 3 - packed upper triangle (xx, xy, yy) in ndc units
  conic    : torch.Tensor # 3 - inverse of cov2d
  depth    : torch.Tensor # view depth, 0 for culled splats

  @property
  def visible(self) -> torch.Tensor:
    return self.depth > 0
