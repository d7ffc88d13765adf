from merc_core.cart.mutator import CartMutator

__all__ = ["CartMutator"]
