"""
PCM ingestion for jt9stream.

StreamProducer pulls raw little-endian int16 mono PCM from a byte source
(normally stdin) and appends it to the SampleRingBuffer the decode loop reads.
"""

from jt9stream.ingest.stream_producer import EndReason, StreamProducer

__all__ = [
    "EndReason",
    "StreamProducer",
]
