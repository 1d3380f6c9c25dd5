"""
HailoRT wrapper for running a compiled YOLOv8 HEF on a Hailo-8 device.
"""

import cv2
import logging
import numpy as np
from typing import Optional, List

logger = logging.getLogger(__name__)


class HailoInference:
    """
    Hailo-8 inference session built on the InferVStreams API.

    The virtual streams pipeline and network activation are opened once in
    initialize() and kept open until cleanup(), so each infer() call only
    pushes a single frame through the device.
    """

    def __init__(self, model_path: str):
        self.model_path = model_path
        self.input_name: Optional[str] = None
        self.output_name: Optional[str] = None
        self.input_shape = None
        self.is_initialized = False

        self._device = None
        self._pipeline = None
        self._activation = None

        try:
            import hailo_platform
        except ImportError as e:
            logger.error(f"Failed to import hailo_platform: {e}")
            raise
        self._hailo = hailo_platform

    def initialize(self) -> bool:
        """
        Open the device, configure the network group and start the pipeline.

        Returns:
            True if the model is ready for inference
        """
        hp = self._hailo
        try:
            logger.info(f"Loading model: {self.model_path}")
            hef = hp.HEF(self.model_path)

            input_info = hef.get_input_vstream_infos()[0]
            output_info = hef.get_output_vstream_infos()[0]
            self.input_name = input_info.name
            self.output_name = output_info.name
            self.input_shape = input_info.shape
            logger.info(f"Model loaded - Input: {self.input_shape}, Output: {output_info.shape}")

            self._device = hp.VDevice()
            configure_params = hp.ConfigureParams.create_from_hef(
                hef, interface=hp.HailoStreamInterface.PCIe
            )
            network_group = self._device.configure(hef, configure_params)[0]

            input_params = hp.InputVStreamParams.make(
                network_group, format_type=hp.FormatType.UINT8
            )
            output_params = hp.OutputVStreamParams.make(
                network_group, format_type=hp.FormatType.FLOAT32
            )

            self._pipeline = hp.InferVStreams(network_group, input_params, output_params)
            self._pipeline.__enter__()
            self._activation = network_group.activate(network_group.create_params())
            self._activation.__enter__()

            self.is_initialized = True
            logger.info("Hailo inference initialized successfully")
            return True

        except Exception as e:
            logger.error(f"Failed to initialize Hailo inference: {e}")
            self.cleanup()
            return False

    def preprocess(self, image: np.ndarray) -> np.ndarray:
        """Convert a BGR letterboxed image to the RGB UINT8 layout the HEF expects."""
        return cv2.cvtColor(image, cv2.COLOR_BGR2RGB).astype(np.uint8)

    def infer(self, image: np.ndarray) -> Optional[List]:
        """
        Run one frame through the device.

        Returns:
            Per-class list of arrays of [y1, x1, y2, x2, score] rows
            (normalized to the model input), or None on failure
        """
        if not self.is_initialized:
            return None

        try:
            outputs = self._pipeline.infer({self.input_name: np.expand_dims(image, axis=0)})
            return outputs[self.output_name][0]
        except Exception as e:
            logger.error(f"Inference failed: {e}")
            return None

    def cleanup(self):
        """Deactivate the network and release the device."""
        for ctx in (self._activation, self._pipeline):
            if ctx is None:
                continue
            try:
                ctx.__exit__(None, None, None)
            except Exception as e:
                logger.warning(f"Error closing Hailo context: {e}")
        self._activation = None
        self._pipeline = None
        if self._device is not None:
            try:
                self._device.release()
            except Exception as e:
                logger.warning(f"Error releasing Hailo device: {e}")
            self._device = None
        self.is_initialized = False
