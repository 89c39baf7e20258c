from .protocol import Storage
from .s3 import S3Storage

__all__ = ["Storage", "S3Storage"]
