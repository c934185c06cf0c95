from .price_walker import PriceWalker, build_symbol_rng
from .symbol_spec import DEFAULT_SYMBOL_SPECS, SymbolSpec

__all__ = ["DEFAULT_SYMBOL_SPECS", "PriceWalker", "SymbolSpec", "build_symbol_rng"]
