from topicquota.adapters.memory import InMemoryLedger, StaticWalletSigner

__all__ = ["InMemoryLedger", "StaticWalletSigner"]
