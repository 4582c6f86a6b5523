"""Service modules"""
from .agent import WalletAgent, build_agent

__all__ = ["WalletAgent", "build_agent"]
