"""
objstore - uniform object storage over a local dual-tree filesystem, AWS S3 or Alibaba OSS.
"""

__version__ = '0.1.0'
