import math
import torch
import torch.nn.functional as F

from tiled_splatting.data_types import Splats
from tiled_splatting.perspective import Camera


def random_camera(distance:float = 4.0, max_image_size:int = 256) -> Camera:
  direction = F.normalize(torch.randn(3), dim=0)

  w, h = [x.item() for x in torch.randint(size=(2,), 
            low=max_image_size // 4, high=max_image_size)]
  fov = torch.rand(1).item() * 50 + 40

  return Camera.look_at(direction * distance, (0.0, 0.0, 0.0), 
                        world_up=(0.0, 1.0, 0.0) if abs(direction[1]) < 0.9 else (1.0, 0.0, 0.0),
                        fov=fov, image_size=(w, h))


def random_splats(n:int, scale_factor:float = 0.1, alpha_range=(0.1, 0.9), 
                  device='cpu', dtype=torch.float32) -> Splats:
  position = torch.randn(n, 3)
  scale = torch.rand(n, 3) * scale_factor + 0.01 * scale_factor
  rotation = F.normalize(torch.randn(n, 4), dim=1)

  lo, hi = alpha_range
  opacity = torch.rand(n, 1) * (hi - lo) + lo
  feature = torch.rand(n, 3)

  splats = Splats(position=position, scale=scale, rotation=rotation, 
                  opacity=opacity, feature=feature, batch_size=(n,))
  return splats.to(device=device, dtype=dtype)


def single_splat(position=(0., 0., 0.), scale:float = 0.5, opacity:float = 1.0, 
                 feature=(1., 0.5, 0.25), device='cpu', dtype=torch.float32) -> Splats:
  return Splats.from_arrays(
    position=position, 
    scale=[scale] * 3, 
    rotation=[1., 0., 0., 0.],
    opacity=[opacity], 
    feature=feature, 
    device=device, dtype=dtype)


def front_camera(image_size=(64, 64), distance:float = 5.0, fov:float = 60.0, device='cpu') -> Camera:
  """ Camera on the -z axis looking at the origin """
  return Camera.look_at((0., 0., -distance), (0., 0., 0.), fov=fov, 
                        image_size=image_size, device=device)


def ndc_scale(distance:float, fov:float = 60.0) -> float:
  # world units at the given depth -> ndc units
  return 1.0 / (distance * math.tan(math.radians(fov) * 0.5))
