from .reading import ExternalReading, Reading

__all__ = ["ExternalReading", "Reading"]
