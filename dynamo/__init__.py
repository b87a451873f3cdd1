"""
dynamo - Paced Synthetic Log Emitter

Emits scripted HTTP access logs and VPC flow logs, with embedded anomaly
narratives, at a controllable pace towards a listening log collector.
"""

__version__ = "1.0.0"
__author__ = "dynamo contributors"
