import torch


def compare(name, x, y, **kwargs):
  if x.shape != y.shape:
    raise AssertionError(f"{name} shape mismatch {x.shape} != {y.shape}")

  if not torch.allclose(x, y, **kwargs):
    print(f"x={x}")
    print(f"y={y}")

    atol = (x - y).abs().max().item()
    raise AssertionError(f"{name} mismatch with atol={atol}")


def compare_projected(p1, p2, **kwargs):
  compare("position", p1.position, p2.position, **kwargs)
  compare("cov2d", p1.cov2d, p2.cov2d, **kwargs)
  compare("conic", p1.conic, p2.conic, **kwargs)
  compare("depth", p1.depth, p2.depth, **kwargs)
