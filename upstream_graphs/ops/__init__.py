from .op_types import OpType

__all__ = ["OpType"]
