"""Archive taxonomy: folder/filename classification and import for document archives."""

__version__ = "1.0.0"
