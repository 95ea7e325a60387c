

class CapacityError(RuntimeError):
  """ A scratch or instance buffer is smaller than a frame requires.
    The caller resizes (to at least `required`) and reruns the whole frame.
  """

  def __init__(self, what:str, required:int, available:int):
    self.what = what
    self.required = int(required)
    self.available = int(available)

    super().__init__(f"{what}: requires {self.required} elements, only {self.available} available")


def check_capacity(what:str, required:int, available:int):
  if required > available:
    raise CapacityError(what, required, available)
