class ForensicsError(Exception):
    pass


class ParameterError(ForensicsError, ValueError):
    """A request parameter is structurally nonsensical (e.g. a negative depth)."""

    def __init__(self, name: str, value) -> None:
        super().__init__(f"Parameter '{name}' must not be negative (got {value!r}).")
        self.name = name
        self.value = value
