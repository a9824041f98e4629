__version__ = "0.1.0"

from surfer.instrumentation import instrument, uninstrument

__all__ = ["__version__", "instrument", "uninstrument"]
