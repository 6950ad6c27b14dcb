"""
Clusternator - per pull request and per deployment environments on AWS.

This package provisions and tears down the security group, container
instance, ECS cluster, services and DNS record that make up one environment.
"""

__version__ = "0.1.0"
__author__ = "Clusternator"
