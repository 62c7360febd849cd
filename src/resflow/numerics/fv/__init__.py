from .tpfa import half_transmissibility, tpfa_transmissibility

__all__ = ["half_transmissibility", "tpfa_transmissibility"]
