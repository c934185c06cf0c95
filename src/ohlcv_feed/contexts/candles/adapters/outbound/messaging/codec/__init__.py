from .snapshot_codec import decode_snapshot, encode_snapshot

__all__ = ["decode_snapshot", "encode_snapshot"]
