"""Cash application engine: payment matching, exception taxonomy, settlement and posting gate."""

__version__ = "1.0.0"
