from .fluid import CompositionalFluid, rachford_rice, wilson_k_values

__all__ = ["CompositionalFluid", "rachford_rice", "wilson_k_values"]
