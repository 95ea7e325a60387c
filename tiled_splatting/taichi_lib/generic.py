from types import SimpleNamespace
import taichi as ti


def make_library(dtype=ti.f32):
  """
  This function returns a namespace containing all the functions and data types
  that are used in the kernels. This is done to provide different precisions
  for the same code, f64 is used to compare against the torch reference.
  """

  vec2 = ti.types.vector(2, dtype)
  vec3 = ti.types.vector(3, dtype)
  vec4 = ti.types.vector(4, dtype)

  mat2 = ti.types.matrix(2, 2, dtype)
  mat3 = ti.types.matrix(3, 3, dtype)
  mat4 = ti.types.matrix(4, 4, dtype)

  mat2x3f = ti.types.matrix(n=2, m=3, dtype=dtype)

  #
  # Rotation and covariance construction
  #

  @ti.func
  def scaled_quat_to_mat(q:vec4, s:vec3) -> mat3:
    # quaternion stored as (r, x, y, z), columns scaled by s
    w, x, y, z = q
    x2, y2, z2 = x*x, y*y, z*z

    return mat3(
      s.x * (1 - 2*y2 - 2*z2), s.y * (2*x*y - 2*w*z), s.z * (2*x*z + 2*w*y),
      s.x * (2*x*y + 2*w*z), s.y * (1 - 2*x2 - 2*z2), s.z * (2*y*z - 2*w*x),
      s.x * (2*x*z - 2*w*y), s.y * (2*y*z + 2*w*x), s.z * (1 - 2*x2 - 2*y2)
    )

  @ti.func
  def covariance_3d(rotation:vec4, scale:vec3) -> mat3:
    # Sigma = R @ S @ S.transpose() @ R.transpose()
    m = scaled_quat_to_mat(rotation, scale)
    return m @ m.transpose()

  #
  # Projection related functions
  #

  @ti.func
  def linear_part(T:mat4) -> mat3:
    return mat3([
      [T[0, 0], T[0, 1], T[0, 2]],
      [T[1, 0], T[1, 1], T[1, 2]],
      [T[2, 0], T[2, 1], T[2, 2]]
    ])

  @ti.func
  def transform_point(T:mat4, position:vec3) -> vec3:
    return (T @ vec4(*position, 1)).xyz

  @ti.func
  def clamp_to_frustum(t:vec3, tan_fov:vec2, fov_clamp:dtype) -> vec3:
    """ Clamp a view space point to within fov_clamp * tan(fov) of the frustum,
      keeps the affine Jacobian bounded for points near the image edges
    """
    limit = tan_fov * fov_clamp
    txy = ti.math.clamp(t.xy / t.z, -limit, limit) * t.z
    return vec3(txy.x, txy.y, t.z)

  @ti.func
  def ewa_jacobian(t:vec3, focal:vec2) -> mat2x3f:
    z = t.z
    return mat2x3f([
      [focal.x / z, 0, -(focal.x * t.x) / (z * z)],
      [0, focal.y / z, -(focal.y * t.y) / (z * z)],
    ])

  @ti.func
  def project_covariance(W:mat3, cov3d:mat3, J:mat2x3f) -> vec3:
    # equation (5) in the paper, cov_uv = J @ W @ Sigma @ W.transpose() @ J.transpose()
    m = J @ W
    return upper(m @ cov3d @ m.transpose())

  @ti.func
  def ndc_to_pixel(v:dtype, size:dtype) -> dtype:
    return ((v + 1.0) * size - 1.0) * 0.5

  #
  # Ellipse related functions, covariance, conic, etc.
  #

  @ti.func
  def upper(cov: mat2) -> vec3:
    return vec3(cov[0, 0], cov[0, 1], cov[1, 1])

  @ti.func
  def cov_to_conic(cov: vec3, eps:dtype) -> vec3:
    # adjugate / determinant, eps keeps degenerate covariances finite
    det = cov.x * cov.z - cov.y * cov.y
    inv_det = 1.0 / (det + eps)
    return vec3(inv_det * cov.z, -inv_det * cov.y, inv_det * cov.x)

  @ti.func
  def max_eigenvalue(cov: vec3, min_discriminant:dtype) -> dtype:
    det = cov.x * cov.z - cov.y * cov.y
    mid = 0.5 * (cov.x + cov.z)

    gap = ti.sqrt(ti.max(min_discriminant, mid * mid - det))
    return ti.max(mid + gap, mid - gap)

  @ti.func
  def conic_power(d: vec2, conic: vec3) -> dtype:
    return -0.5 * (conic.x * d.x * d.x + conic.z * d.y * d.y) - conic.y * d.x * d.y

  @ti.func
  def tile_rect(mean: vec2, radius: ti.i32, grid: ti.math.ivec2, tile_size: ti.template()):
    """ Range of tiles [min, max) overlapped by a circle, clamped to the grid """
    r = ti.cast(radius, dtype)
    lower = ti.cast((mean - r) / tile_size, ti.i32)
    upper = ti.cast((mean + r + (tile_size - 1)) / tile_size, ti.i32)

    return (ti.math.clamp(lower, 0, grid),
            ti.math.clamp(upper, 0, grid))


  return SimpleNamespace(**locals())
