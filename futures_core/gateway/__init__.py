from futures_core.gateway.base import ExchangeGateway

__all__ = ["ExchangeGateway"]
