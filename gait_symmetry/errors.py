"""
Error types raised by the symmetry functions and the simulation kernels
"""


class DomainError(ValueError):
    """
    Input outside the mathematical domain of an operation

    The offending value is kept on ``value``.
    """

    def __init__(self, value, message):
        self.value = value
        super().__init__(f"{message} (got {value!r})")


class DimensionMismatch(ValueError):
    """Buffer shape or length does not match what a kernel expects"""

    def __init__(self, value, message):
        self.value = value
        super().__init__(message)
