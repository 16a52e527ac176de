from .client import CatalogError, UdataClient
from .models import CatalogResource, Checksum, Dataset

__all__ = ["CatalogError", "CatalogResource", "Checksum", "Dataset", "UdataClient"]
