"""数据模型模块"""

from .monitor import (
    Project, ProbeResult, ProbeOutcome, ProbeErrorType, ProjectState, ProjectStatus,
    TransitionEvent, ChannelConfig, ChannelOutcome, DeliveryStatus, DispatchResult,
    ProjectCycleResult, TickReport
)

__all__ = [
    'Project', 'ProbeResult', 'ProbeOutcome', 'ProbeErrorType', 'ProjectState',
    'ProjectStatus', 'TransitionEvent', 'ChannelConfig', 'ChannelOutcome',
    'DeliveryStatus', 'DispatchResult', 'ProjectCycleResult', 'TickReport'
]
