from topicquota.clients.mirror import MirrorNodeClient

__all__ = ["MirrorNodeClient"]
