from .camera import Camera
from .projection import GaussianProjector, project_function

__all__ = [
  "Camera",
  "GaussianProjector",
  "project_function",
]
