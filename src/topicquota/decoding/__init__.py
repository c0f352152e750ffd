"""Envelope reconstruction from raw topic entries.

This package provides:
- Chunk reassembly for multi-part submissions (reassemble, split_payload)
- Tolerant decoder with regex-guided repair (decode_payload)
- Message registry with canonical tags, wire aliases and projections
- Builders for the envelopes this system writes
"""

from topicquota.decoding.chunks import ReassemblyResult, ReassemblyStats, reassemble, split_payload
from topicquota.decoding.decoder import DecodeStats, decode_payload, decode_payloads
from topicquota.decoding.registry import add_many, add_message_spec, make_registry
from topicquota.decoding.specs import MessageRegistry, MessageSpec, Projection, ProjectionRefs

__all__ = [
    "ReassemblyResult",
    "ReassemblyStats",
    "reassemble",
    "split_payload",
    "DecodeStats",
    "decode_payload",
    "decode_payloads",
    "add_many",
    "add_message_spec",
    "make_registry",
    "MessageRegistry",
    "MessageSpec",
    "Projection",
    "ProjectionRefs",
]
