"""
Inference Engine Interface

Narrow boundary between the pipeline and whatever runtime hosts the models.
Model loading and session management live on the other side of it.
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Mapping, Optional
import numpy as np

from ..exceptions import InferenceFailureError, ModelUnavailableError

DETECTION_MODEL = "detection"
SEGMENTATION_MODEL = "segmentation"
TERRAIN_CLASSIFIER_MODEL = "terrain_classifier"
DETAIL_CLASSIFIER_MODEL = "detail_classifier"
HEIGHT_MODEL = "height"

Outputs = Dict[str, np.ndarray]


class InferenceEngine(ABC):
    """Runs named models on float32 tensors."""

    @abstractmethod
    def has_model(self, model_name: str) -> bool:
        """Whether a model with this name is loaded."""

    @abstractmethod
    async def run_inference(self, model_name: str, inputs: Mapping[str, np.ndarray]) -> Outputs:
        """
        Run one model.

        Args:
            model_name: Name of a loaded model
            inputs: Named input tensors

        Returns:
            Named output tensors
        """


class NullInferenceEngine(InferenceEngine):
    """Engine with no models; every stage takes its fallback path."""

    def has_model(self, model_name: str) -> bool:
        return False

    async def run_inference(self, model_name: str, inputs: Mapping[str, np.ndarray]) -> Outputs:
        raise ModelUnavailableError(f"No model loaded for '{model_name}'")


class CallableInferenceEngine(InferenceEngine):
    """
    Engine backed by plain callables, one per model name.

    Each callable receives the input mapping and returns either a mapping of
    named outputs or a single array (exposed as ``"output"``). Coroutine
    functions are awaited; plain functions run in the default executor.
    """

    def __init__(self, models: Optional[Dict[str, Callable[[Mapping[str, np.ndarray]], Any]]] = None):
        self.models = dict(models or {})
        self.logger = logging.getLogger(__name__)
        self.logger.info(f"Callable inference engine initialized with models: {sorted(self.models)}")

    def register(self, model_name: str, model: Callable[[Mapping[str, np.ndarray]], Any]) -> None:
        self.models[model_name] = model

    def has_model(self, model_name: str) -> bool:
        return model_name in self.models

    async def run_inference(self, model_name: str, inputs: Mapping[str, np.ndarray]) -> Outputs:
        if model_name not in self.models:
            raise ModelUnavailableError(f"No model loaded for '{model_name}'")

        model = self.models[model_name]
        if inspect.iscoroutinefunction(model):
            result = await model(inputs)
        else:
            # Blocking runtimes stay off the event loop
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(None, model, inputs)
            if inspect.isawaitable(result):
                result = await result

        if result is None:
            return {}
        if isinstance(result, Mapping):
            return {name: np.asarray(value) for name, value in result.items()}
        return {"output": np.asarray(result)}


async def run_model(engine: InferenceEngine,
                    model_name: str,
                    inputs: Mapping[str, np.ndarray],
                    required_output: Optional[str] = None) -> Outputs:
    """
    Run a model and normalize failures into the pipeline's error taxonomy.

    Args:
        engine: Inference engine
        model_name: Model to run
        inputs: Named input tensors
        required_output: Output name that must be present; when absent and the
            model returned exactly one output, that output is used instead

    Returns:
        Named output tensors

    Raises:
        ModelUnavailableError: If the engine has no such model
        InferenceFailureError: If the call fails or the output is missing
    """
    if engine is None or not engine.has_model(model_name):
        raise ModelUnavailableError(f"No model loaded for '{model_name}'")

    try:
        outputs = await engine.run_inference(model_name, inputs)
    except ModelUnavailableError:
        raise
    except Exception as e:
        raise InferenceFailureError(f"Inference with '{model_name}' failed: {e}") from e

    if not outputs:
        raise InferenceFailureError(f"Inference with '{model_name}' produced no output")

    if required_output is not None and required_output not in outputs:
        if len(outputs) == 1:
            outputs = {required_output: next(iter(outputs.values()))}
        else:
            raise InferenceFailureError(
                f"Inference with '{model_name}' produced no '{required_output}' output"
            )

    return outputs
