"""Look up court case status, parties and orders over HTTP, with caching, storage and a query log."""

__version__ = "0.1.0"