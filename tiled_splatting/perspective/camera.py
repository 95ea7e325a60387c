from dataclasses import dataclass, replace
import math
from numbers import Integral
from beartype.typing import Optional, Sequence, Tuple
from beartype import beartype
import torch
import torch.nn.functional as F


@beartype
@dataclass
class Camera:
  """ Pinhole camera looking down its `front` axis,
    right, up and front form the rows of the world to camera rotation.
  """
  position: torch.Tensor # (3)
  front: torch.Tensor    # (3)
  up: torch.Tensor       # (3)
  right: torch.Tensor    # (3)

  fov: float = 60.0  # vertical field of view in degrees
  aspect_ratio: float = 1.0  # width / height
  image_size: Optional[Tuple[Integral, Integral]] = None  # (width, height)

  def __post_init__(self):
    for name in ('position', 'front', 'up', 'right'):
      v = getattr(self, name)
      assert v.shape == (3,), f"Expected {name} of shape (3,), got {v.shape}"

    assert 0 < self.fov < 180, f"fov must be in (0, 180) degrees, got {self.fov}"
    assert self.aspect_ratio > 0

  @staticmethod
  def look_at(position:Sequence[float] | torch.Tensor, 
              target:Sequence[float] | torch.Tensor, 
              world_up:Sequence[float] | torch.Tensor = (0.0, 1.0, 0.0),
              fov:float = 60.0, 
              image_size:Optional[Tuple[Integral, Integral]] = None,
              aspect_ratio:Optional[float] = None,
              device=None, dtype=torch.float32) -> 'Camera':
    
    def as_vec(v):
      return torch.as_tensor(v, dtype=dtype, device=device).reshape(3)

    position, target, world_up = as_vec(position), as_vec(target), as_vec(world_up)

    front = F.normalize(target - position, dim=0)
    right = F.normalize(torch.linalg.cross(front, world_up), dim=0)
    up = F.normalize(torch.linalg.cross(right, front), dim=0)

    if aspect_ratio is None:
      aspect_ratio = image_size[0] / image_size[1] if image_size is not None else 1.0

    return Camera(position=position, front=front, up=up, right=right, 
                  fov=float(fov), aspect_ratio=float(aspect_ratio), image_size=image_size)

  @property
  def device(self):
    return self.position.device

  @property
  def dtype(self):
    return self.position.dtype

  @property
  def world_to_camera(self) -> torch.Tensor:
    """ 4x4 view matrix, rows (right, up, front) and translation -dot(position, axis) """
    rotation = torch.stack([self.right, self.up, self.front])

    m = torch.eye(4, device=self.device, dtype=self.dtype)
    m[:3, :3] = rotation
    m[:3, 3] = -(rotation @ self.position)
    return m

  @property
  def tan_fov(self) -> Tuple[float, float]:
    """ (tan(fov_x / 2), tan(fov_y / 2)) """
    tan_y = math.tan(math.radians(self.fov) * 0.5)
    return (tan_y * self.aspect_ratio, tan_y)

  @property
  def focal_length(self) -> Tuple[float, float]:
    """ Focal length in pixels, requires image_size """
    assert self.image_size is not None, "focal_length requires camera image_size"
    w, h = self.image_size
    tan_x, tan_y = self.tan_fov

    return (w / (2.0 * tan_x), h / (2.0 * tan_y))

  def to(self, device=None, dtype=None) -> 'Camera':
    return replace(self, 
      position=self.position.to(device=device, dtype=dtype),
      front=self.front.to(device=device, dtype=dtype),
      up=self.up.to(device=device, dtype=dtype),
      right=self.right.to(device=device, dtype=dtype))

  def __repr__(self):
    pos_str = ", ".join([f"{x:.3f}" for x in self.position.tolist()])
    size_str = "x".join(str(x) for x in self.image_size) if self.image_size is not None else "none"
    return f"Camera(position=({pos_str}), fov={self.fov:.2f}, aspect={self.aspect_ratio:.4f}, image_size={size_str})"
