"""
Error taxonomy for fragment_normalizer.
Sample-scoped errors fail a single sample; batch-scoped errors abort the run.
"""


class NormalizerError(Exception):
    """Base class for all pipeline errors."""


class InputError(NormalizerError):
    """Missing, unreadable or malformed input (fragment file, chromosome table, region list)."""


# The counter raises InputError for sources it cannot count.
CountError = InputError


class QCError(NormalizerError):
    """No sample survived the yield filter; the run cannot pick a target depth."""


class DownsampleError(NormalizerError):
    """I/O failure while downsampling, or a universe smaller than the target depth."""


class ExternalToolError(NormalizerError):
    """
    An external tool exited non-zero or could not be started.
    Keeps the exit status and captured diagnostics of the tool.
    """

    def __init__(self, tool: str, returncode: int, output: str = ""):
        self.tool = tool
        self.returncode = returncode
        self.output = output
        message = f"{tool} failed with exit status {returncode}"
        if output:
            message += f": {output.strip()[-500:]}"
        super().__init__(message)
