"""
Adaptation Module

Link quality estimation, profile selection and the restart deadband.
"""

from .quality_estimator import QualityEstimator, StaticLinkProbe, TcpConnectProbe
from .parameter_selector import ParameterSelector, level_index, select_level
from .adaptation_gate import AdaptationGate

__all__ = [
    'QualityEstimator',
    'StaticLinkProbe',
    'TcpConnectProbe',
    'ParameterSelector',
    'level_index',
    'select_level',
    'AdaptationGate'
]
