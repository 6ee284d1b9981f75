"""s3drive: an HTTP file drive on top of an object-storage bucket."""

__version__ = "0.1.0"
