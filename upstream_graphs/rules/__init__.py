from . import slice_rules, gathernd_rules, reshape_rules

__all__ = ["slice_rules", "gathernd_rules", "reshape_rules"]
