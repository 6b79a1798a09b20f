"""Local removal of a semi-transparent logo watermark from batches of images."""

__version__ = "0.1.0"
