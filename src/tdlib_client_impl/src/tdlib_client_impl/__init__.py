"""Public exports for the TDLib JSON client implementation package."""

from tdlib_client_impl.tdjson_impl import TdjsonClient, get_client_impl, register

__all__ = ["TdjsonClient", "get_client_impl", "register"]


register()
