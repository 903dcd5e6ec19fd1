"""meme-receipt-api: records trade/alert receipts into a key-value store."""

__version__ = "0.3.0"
