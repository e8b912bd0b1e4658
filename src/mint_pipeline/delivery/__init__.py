"""Delivery package — best-effort fan-out of ledger entries to external sinks."""

from mint_pipeline.delivery.fanout import DELIVERY_LOG_SIZE, DeliveryFanout, DeliveryRecord, Sink

__all__ = ["DELIVERY_LOG_SIZE", "DeliveryFanout", "DeliveryRecord", "Sink"]
