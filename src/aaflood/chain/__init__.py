from .reconciler import ChainClient, ChainReconciler, ReconcileReport, trigger_payload

__all__ = ["ChainClient", "ChainReconciler", "ReconcileReport", "trigger_payload"]
