"""
kube-overlay-ip: per-node overlay IPs and cluster-wide static routes.

Two processes share this package:
- controller: reserves overlay IPs in phpIPAM for every Node
- agent: applies the overlay interface and static routes on its own node
"""

__version__ = "0.1.0"
