"""Event photo and video sharing core: policy engine, asset pipeline and storage lifecycle."""

__version__ = "1.0.0"
