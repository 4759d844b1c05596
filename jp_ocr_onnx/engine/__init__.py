from .base import Accelerator, CompiledModel, InferenceEngine, TensorBuffer

__all__ = ["Accelerator", "CompiledModel", "InferenceEngine", "TensorBuffer"]
