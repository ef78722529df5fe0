"""Remote source implementations."""

from .coingecko import CoinGeckoClient

__all__ = ['CoinGeckoClient']
