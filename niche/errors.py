"""
Exception types raised by the niche projection pipeline.

Fatal errors abort the run. ``VariableSkipped`` is recoverable and only
ends the work for one climate variable.
"""


class NicheError(Exception):
    """Base class for all pipeline errors."""


class InputTableError(NicheError, FileNotFoundError):
    """A required input table or raster file does not exist."""


class MissingColumnsError(NicheError, ValueError):
    """A table lacks columns the pipeline requires."""

    def __init__(self, missing: list[str], table: str = "input table"):
        self.missing = list(missing)
        self.table = table
        super().__init__(f"Missing required columns in {table}: {', '.join(self.missing)}")


class InsufficientClassesError(NicheError, ValueError):
    """Training labels do not contain both presence and absence records."""


class ConfigurationError(NicheError, ValueError):
    """Run parameters are inconsistent with the data (e.g. too few records per fold)."""


class MissingCovariateError(NicheError, ValueError):
    """A raster stack lacks covariates the model was trained on."""

    def __init__(self, missing: list[str], scenario: str = ""):
        self.missing = list(missing)
        self.scenario = scenario
        where = f" for scenario '{scenario}'" if scenario else ""
        super().__init__(f"Raster stack{where} is missing model covariates: {', '.join(self.missing)}")


class GeometryMismatchError(NicheError, ValueError):
    """Two grids do not share the same extent, resolution, cell count or CRS."""


class InvalidRasterError(NicheError, ValueError):
    """A raster file cannot be read, or its geometry cannot serve as a grid."""


class VariableSkipped(NicheError):
    """A climate variable could not be rasterized and was left out of its stack."""

    def __init__(self, variable: str, reason: str):
        self.variable = variable
        self.reason = reason
        super().__init__(f"{variable}: {reason}")
