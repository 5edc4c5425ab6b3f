"""FT supply indexer: burned / circulating / non-circulating accounting across chains."""

__version__ = "0.1.0"
