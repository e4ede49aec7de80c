from .file_transfer import FileTransferManager
from .messaging import MessagingManager
from .transfers import Artifact, Direction, InboundTransfer, OutboundTransfer, TransferState, TransferTracker

__all__ = [
    "Artifact",
    "Direction",
    "FileTransferManager",
    "InboundTransfer",
    "MessagingManager",
    "OutboundTransfer",
    "TransferState",
    "TransferTracker",
]
