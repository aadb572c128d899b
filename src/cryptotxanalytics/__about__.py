__title__ = "CryptoTxAnalytics"
__version__ = "0.3.0"
