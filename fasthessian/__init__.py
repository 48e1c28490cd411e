from .detector import (
    FastHessian,
    HessianData,
    HessianParams,
    Keypoint,
    compute,
    create_hessian_data,
    detect,
)
from .integral import IntegralImage, read_rgb, to_luma
from .response import FILTER_MAP, FILTER_SIZES, ResponseLayer, build_response_map

__all__ = [
    "FILTER_MAP",
    "FILTER_SIZES",
    "FastHessian",
    "HessianData",
    "HessianParams",
    "IntegralImage",
    "Keypoint",
    "ResponseLayer",
    "build_response_map",
    "compute",
    "create_hessian_data",
    "detect",
    "read_rgb",
    "to_luma",
]
