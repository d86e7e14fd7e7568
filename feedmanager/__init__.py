"""Feed Manager - transit feed ingestion, validation and auto-publishing."""

__app_name__ = "feedmanager"
__version__ = "0.1.0"
