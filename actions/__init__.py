from .base import BaseAction
from .simulate import SimulatedAction
from .command import CommandAction

__all__ = ["BaseAction", "SimulatedAction", "CommandAction"]
