"""Extension passes run after a successful walk."""

from volindex.scanner.passes.metadata import MetadataPass
from volindex.scanner.passes.thumbs import ThumbnailPass
from volindex.scanner.passes.transfer_logs import TransferLogPass

__all__ = ["MetadataPass", "ThumbnailPass", "TransferLogPass"]
