from .base import Operation
from .file import FileOperation
from .http_check import HttpCheckOperation
from .package import PackageOperation
from .service import ServiceOperation

OPERATION_REGISTRY = {
    "package": PackageOperation,
    "file": FileOperation,
    "service": ServiceOperation,
    "http_check": HttpCheckOperation,
}

__all__ = [
    "Operation",
    "FileOperation",
    "HttpCheckOperation",
    "PackageOperation",
    "ServiceOperation",
    "OPERATION_REGISTRY",
]
